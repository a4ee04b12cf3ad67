"""
Document templates - visa paperwork rendered from answers + profile

Each template is a pure function TemplateContext -> dict with keys
'title', 'sections', 'metadata' and optionally 'language' / 'subtitle'.
Templates are registered by type id; nothing here knows about the
registry internals or about rendering to bytes.

Documents:
- cover-letter: consulate cover letter (EN) / prefecture renewal letter (FR)
- financial-statement: resources statement with optional summary table
- no-work-attestation: attestation on honor, always English
- accommodation-letter: proof of accommodation
"""

import logging

from backend.core.template_fields import (
    ROLE_CLOSING,
    ROLE_SALUTATION,
    ROLE_SIGNATURE,
    TemplateContext,
    header,
    join_words,
    paragraph,
    table,
)
from backend.utils.helpers import format_currency, parse_currency

logger = logging.getLogger(__name__)

SPOUSE_APPLICANTS = ("spouse", "spouse_kids")
CHILDREN_APPLICANTS = ("spouse_kids", "kids_only")

SIGNATURE_LINE = "_________________________________"

VISA_LABELS = {
    "en": {
        "visitor": "long-stay visitor visa (VLS-TS Visiteur)",
        "talent_passport": "Talent Passport visa",
        "student": "long-stay student visa (VLS-TS Étudiant)",
        "family": "long-stay family visa (Vie Privée et Familiale)",
        "retirement": "long-stay retiree visa (Retraité)",
    },
    "fr": {
        "visitor": "visa long séjour visiteur (VLS-TS Visiteur)",
        "talent_passport": "visa Passeport Talent",
        "student": "visa long séjour étudiant (VLS-TS Étudiant)",
        "family": "visa long séjour vie privée et familiale",
        "retirement": "visa long séjour retraité",
    },
}

CONSULATES = {
    "CA": ("Los Angeles", "CA"),
    "NY": ("New York", "NY"),
    "TX": ("Houston", "TX"),
    "FL": ("Miami", "FL"),
    "IL": ("Chicago", "IL"),
}
DEFAULT_CONSULATE = ("Washington", "D.C.")
CONSULATE_NAME = "Consulate General of France"

INCOME_SECTIONS = {
    "employment": {
        "en": "Employment Income",
        "fr": "Revenus d'Emploi",
        "phrase": "employment income",
        "token": "$[EMPLOYMENT INCOME AMOUNT]",
    },
    "retirement": {
        "en": "Retirement & Investment Accounts",
        "fr": "Comptes de Retraite",
        "phrase": "retirement savings and investment accounts",
        "token": "$[RETIREMENT ACCOUNTS AMOUNT]",
    },
    "savings": {
        "en": "Liquid Assets – Bank Accounts",
        "fr": "Actifs Liquides",
        "phrase": "liquid bank assets",
        "token": "$[BANK ACCOUNTS AMOUNT]",
    },
}

DEFAULT_ACTIVITIES = "managing my household and learning French"


def _visa_label(ctx: TemplateContext) -> str:
    labels = VISA_LABELS[ctx.language]
    visa_type = ctx.fields.value("visa_type", default="visitor")
    return labels.get(visa_type, labels["visitor"])


def _has_spouse(ctx: TemplateContext) -> bool:
    return ctx.fields.value("applicants", default="alone") in SPOUSE_APPLICANTS


def _income_sources(ctx: TemplateContext) -> list:
    sources = ctx.fields.items("income_sources", default=["savings"])
    # Unknown sources render as bank accounts
    return [s if s in INCOME_SECTIONS else "savings" for s in sources]


def _signature_block(name: str, date_label: str = "Date: _________________") -> list:
    return [
        paragraph(SIGNATURE_LINE, role=ROLE_SIGNATURE),
        paragraph(name, role=ROLE_SIGNATURE),
        paragraph(date_label, role=ROLE_SIGNATURE),
    ]


# =============================================================================
# Cover letter
# =============================================================================

def build_cover_letter(ctx: TemplateContext) -> dict:
    """Consulate cover letter (EN) or prefecture renewal letter (FR)."""
    fields = ctx.fields
    name = fields.full_name()
    visa = _visa_label(ctx)

    if ctx.language == "fr":
        sections = _french_cover_letter(ctx, name, visa)
    else:
        sections = _english_cover_letter(ctx, name, visa)

    return {
        "title": "Visa Cover Letter",
        "sections": sections,
        "metadata": {
            "visa_type": fields.value("visa_type", default="visitor"),
            "applicants": 2 if _has_spouse(ctx) else 1,
            "language": ctx.language.upper(),
        },
    }


def _english_cover_letter(ctx: TemplateContext, name: str, visa: str) -> list:
    fields = ctx.fields
    has_spouse = _has_spouse(ctx)

    city, state = CONSULATES.get(fields.from_profile("current_state", ""), DEFAULT_CONSULATE)
    recipient = [CONSULATE_NAME, "Visa Section", f"{city}, {state}"]

    sections = [
        header("[DATE]", level=3, role="date"),
        header("\n".join(recipient), level=3, role="recipient", lines=recipient),
        header(f"Long-Stay Visa Application ({visa})", level=2, role="subject"),
        paragraph("Dear Visa Officer,", role=ROLE_SALUTATION),
    ]

    opening = f"I am writing to submit my application for a {visa} to France."
    if has_spouse:
        spouse = fields.personal("spouse_name", "[SPOUSE NAME]")
        opening += (
            f" My spouse, {spouse}, is simultaneously submitting their own application, "
            f"as we intend to relocate together."
        )
    sections.append(paragraph(opening))

    property_text = _property_paragraph(ctx)
    if property_text:
        sections.append(paragraph(property_text))

    move_reason = fields.from_answers("move_reason")
    if move_reason:
        sections.append(paragraph(str(move_reason)))

    sections.append(paragraph(_status_paragraph(ctx)))
    sections.append(paragraph(_financial_paragraph(ctx, has_spouse)))
    sections.append(paragraph(
        "I have obtained comprehensive private health insurance that covers the full "
        "twelve-month duration of my visa. The policy meets all French requirements for "
        "medical coverage, hospitalization, and repatriation."
    ))
    sections.append(paragraph(
        "I am genuinely excited about the opportunity to live in France. I have prepared "
        "carefully for this transition, ensuring that I have the financial means, "
        "accommodation, and health coverage to support myself without relying on French "
        "public resources. I respectfully request that you approve my application. I am "
        "happy to provide any additional documentation or clarification that may be helpful."
    ))
    sections.append(paragraph("Respectfully submitted,", role=ROLE_CLOSING))
    sections.extend(_signature_block(name))
    return sections


def _french_cover_letter(ctx: TemplateContext, name: str, visa: str) -> list:
    location = ctx.fields.value("target_location", default="[VILLE]")
    recipient = ["Préfecture de [DÉPARTEMENT]", "Service des Étrangers", "[VILLE], France"]

    sections = [
        header("[DATE]", level=3, role="date"),
        header("\n".join(recipient), level=3, role="recipient", lines=recipient),
        header("Demande de renouvellement de visa long séjour", level=2, role="subject"),
        paragraph("Madame, Monsieur,", role=ROLE_SALUTATION),
        paragraph(f"J'ai l'honneur de solliciter le renouvellement de mon {visa}."),
        paragraph(f"Je réside actuellement à {location} et souhaite continuer à y résider."),
        paragraph(
            "Je dispose des ressources financières suffisantes pour subvenir à mes besoins "
            "sans recourir aux aides publiques françaises."
        ),
        paragraph("Je reste à votre disposition pour tout renseignement complémentaire."),
        paragraph(
            "Je vous prie d'agréer, Madame, Monsieur, l'expression de mes salutations distinguées.",
            role=ROLE_CLOSING,
        ),
    ]
    sections.extend(_signature_block(name, "Date : _________________"))
    return sections


def _property_paragraph(ctx: TemplateContext) -> str:
    status = ctx.fields.from_answers("property_status", default="none")
    location = ctx.fields.value("target_location", default="[LOCATION IN FRANCE]")

    if status == "purchased":
        return (
            f"I have purchased property in {location}, France. "
            f"This property will serve as my primary residence."
        )
    if status == "purchasing":
        return (
            f"I am in the process of purchasing property in {location}, France. "
            f"I have signed a preliminary sales agreement (compromis de vente) and the "
            f"transaction is progressing toward completion."
        )
    return ""


def _status_paragraph(ctx: TemplateContext) -> str:
    status = ctx.fields.value("employment_status", default="retired")

    if status == "retired":
        return (
            "I am retired and do not engage in any professional activity. I have no intention "
            "of seeking employment in France or conducting any business activities during my "
            "stay. I confirm that I will not exercise any professional activity in France "
            "during the validity of my visa."
        )
    if status == "employed":
        employer = ctx.fields.personal("employer_name", "[EMPLOYER NAME]")
        return (
            f"I am employed by {employer}, a U.S.-based company. My employment is stable and "
            f"ongoing, providing consistent income to support my stay in France."
        )
    return "I have no intention of seeking employment in France during my stay."


def _financial_paragraph(ctx: TemplateContext, has_spouse: bool) -> str:
    phrases = [INCOME_SECTIONS[s]["phrase"] for s in _income_sources(ctx)]
    if has_spouse:
        subject, resources = "My spouse and I are", "Our combined household resources include"
        statement = "our Financial Resources Statement"
    else:
        subject, resources = "I am", "My resources include"
        statement = "my Financial Resources Statement"

    return (
        f"{subject} financially self-sufficient and will place no burden on the French social "
        f"system. {resources} {join_words(phrases)}. Detailed documentation of these resources "
        f"is provided in {statement} and supporting bank statements."
    )


# =============================================================================
# Financial statement
# =============================================================================

def build_financial_statement(ctx: TemplateContext) -> dict:
    """Statement of financial resources, one section per income source."""
    fields = ctx.fields
    fr = ctx.language == "fr"
    placeholders = fields.use_placeholders
    include_table = fields.value("include_table", profile_key=None, default="yes") == "yes"
    name = fields.full_name()
    has_spouse = _has_spouse(ctx)

    title = "Attestation de Ressources Financières" if fr else "Statement of Financial Resources"
    sections = [header(title, level=1)]

    if fr:
        intro = (
            f"Je soussigné(e), {name}, déclare disposer des ressources financières suivantes "
            f"pour subvenir à {'nos' if has_spouse else 'mes'} besoins pendant "
            f"{'notre' if has_spouse else 'mon'} séjour en France."
        )
    else:
        intro = (
            f"I, {name}, declare that {'my household holds' if has_spouse else 'I hold'} the "
            f"following financial resources to support {'our' if has_spouse else 'my'} stay in France."
        )
    sections.append(paragraph(intro))

    rows = []
    amounts = []
    for source in _income_sources(ctx):
        labels = INCOME_SECTIONS[source]
        section_title = labels["fr"] if fr else labels["en"]

        amount = None if placeholders else parse_currency(fields.from_profile(f"{source}_amount"))
        amounts.append(amount)
        amount_text = labels["token"] if amount is None else format_currency(amount, "$")

        sections.append(header(section_title, level=2))
        sections.append(paragraph(f"Montant : {amount_text}" if fr else f"Amount: {amount_text}"))
        rows.append([section_title, amount_text])

    if include_table:
        if amounts and all(a is not None for a in amounts):
            total = format_currency(sum(amounts), "$")
        else:
            total = "$[TOTAL AMOUNT]"
        rows.append(["Total", total])
        sections.append(table(["Source", "Montant" if fr else "Amount"], rows))

    attached = fields.from_answers("documents_attached")
    if attached:
        label = "Pièces justificatives jointes" if fr else "Supporting documents attached"
        sections.append(paragraph(f"{label}: {attached}"))

    sections.extend(_signature_block(name, "Date : _________________" if fr else "Date: _________________"))

    return {
        "title": "Financial Statement",
        "sections": sections,
        "metadata": {
            "language": ctx.language.upper(),
            "include_table": include_table,
            "placeholders": placeholders,
            "income_sources": _income_sources(ctx),
        },
    }


# =============================================================================
# No-work attestation
# =============================================================================

def build_no_work_attestation(ctx: TemplateContext) -> dict:
    """Attestation on honor. Always English, French title kept for reference."""
    fields = ctx.fields
    name = fields.full_name()
    activities = fields.from_answers("activities", default=DEFAULT_ACTIVITIES)

    sections = [
        header("Attestation on Honor (Attestation sur l'Honneur)", level=1),
        paragraph(
            f"I, {name}, hereby declare on my honor that I do not and will not exercise any "
            f"professional activity in France during the validity of my visa."
        ),
        paragraph(f"During my stay in France, I intend to focus on {activities}."),
        paragraph("Signed in [CITY], on [DATE]", role=ROLE_CLOSING),
    ]
    sections.extend(_signature_block(name))

    return {
        "title": "No Work Attestation",
        "language": "en",
        "sections": sections,
        "metadata": {
            "language": "EN",
            "visa_type": fields.value("visa_type", default="visitor"),
        },
    }


# =============================================================================
# Accommodation letter
# =============================================================================

def build_accommodation_letter(ctx: TemplateContext) -> dict:
    """Proof of accommodation for the declared housing arrangement."""
    fields = ctx.fields
    fr = ctx.language == "fr"
    name = fields.full_name()
    accommodation = fields.value("accommodation_type", profile_key="housing_plans", default="rental")
    address = fields.personal("property_address", "[PROPERTY ADDRESS]")

    price_amount = parse_currency(fields.from_answers("purchase_price"))
    price = format_currency(price_amount) if price_amount is not None else "[PURCHASE PRICE]"
    closing = fields.from_answers("expected_closing", default="[CLOSING DATE]")
    host = fields.personal("host_name", "[HOST NAME]")

    if fr:
        texts = {
            "purchase_complete": (
                f"Je soussigné(e), {name}, certifie être propriétaire du logement situé au "
                f"{address}, acquis pour {price}. Ce logement sera ma résidence principale en France."
            ),
            "purchase_pending": (
                f"Je soussigné(e), {name}, certifie être en cours d'acquisition du logement situé au "
                f"{address} pour {price}. Le compromis de vente a été signé et la vente devrait "
                f"être conclue en {closing}."
            ),
            "rental": (
                f"Je soussigné(e), {name}, certifie que je résiderai dans un logement loué situé au "
                f"{address}. Une copie du bail est jointe."
            ),
            "host": (
                f"Je soussigné(e), {name}, certifie que je serai hébergé(e) par {host} au {address}. "
                f"Une attestation d'hébergement signée et un justificatif de domicile de "
                f"l'hébergeant sont joints."
            ),
        }
    else:
        texts = {
            "purchase_complete": (
                f"I, {name}, certify that I am the owner of the property located at {address}, "
                f"which I purchased for {price}. This property will be my primary residence in France."
            ),
            "purchase_pending": (
                f"I, {name}, certify that I am purchasing the property located at {address} for "
                f"{price}. The preliminary sales agreement (compromis de vente) has been signed and "
                f"the sale is expected to close in {closing}."
            ),
            "rental": (
                f"I, {name}, certify that I will reside in rented accommodation located at "
                f"{address}. A copy of the lease agreement is attached."
            ),
            "host": (
                f"I, {name}, certify that I will be hosted by {host} at {address}. A signed host "
                f"attestation (attestation d'hébergement) and proof of the host's residence are attached."
            ),
        }

    if accommodation not in texts:
        logger.warning(f"Unknown accommodation type, using rental wording: {accommodation}")
        accommodation = "rental"

    title = "Justificatif d'Hébergement" if fr else "Proof of Accommodation"
    sections = [header(title, level=1), paragraph(texts[accommodation])]

    applicants = fields.value("applicants", default="alone")
    if applicants != "alone":
        if fr:
            household = {
                "spouse": "Mon conjoint résidera avec moi à cette adresse.",
                "spouse_kids": "Mon conjoint et nos enfants résideront avec moi à cette adresse.",
                "kids_only": "Mes enfants résideront avec moi à cette adresse.",
            }
        else:
            household = {
                "spouse": "My spouse will live with me at this address.",
                "spouse_kids": "My spouse and our children will live with me at this address.",
                "kids_only": "My children will live with me at this address.",
            }
        if applicants in household:
            sections.append(paragraph(household[applicants]))

    sections.extend(_signature_block(name, "Date : _________________" if fr else "Date: _________________"))

    return {
        "title": "Accommodation Letter",
        "sections": sections,
        "metadata": {
            "language": ctx.language.upper(),
            "accommodation_type": accommodation,
        },
    }


DOCUMENT_TEMPLATES = {
    "cover-letter": build_cover_letter,
    "financial-statement": build_financial_statement,
    "no-work-attestation": build_no_work_attestation,
    "accommodation-letter": build_accommodation_letter,
}


def register_document_templates(registry):
    """Register every document template on a TemplateRegistry."""
    for type_id, template in DOCUMENT_TEMPLATES.items():
        registry.register(type_id, template, kind="document")
