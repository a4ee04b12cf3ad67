"""
Guide templates - plain (non-AI) personalized guides

Each template is a pure function TemplateContext -> dict, like the
document templates. Reference data (fees, processing times, rate tiers,
bank list) comes from the knowledge-base snapshot in the context, so a
data refresh never needs a code change.

Guides:
- apostille: per-state apostille instructions, ordered by lead time
- pet-relocation: EU entry requirements and a personalized timeline
- french-mortgages: offer benchmarks and early payoff penalty analysis
- bank-ratings: banks scored against the member's needs
"""

import logging
import re
from typing import Optional

from backend.contracts import Duration
from backend.core.template_fields import (
    STATUS_CRITICAL,
    STATUS_DONE,
    STATUS_INFO,
    STATUS_OK,
    STATUS_TODO,
    STATUS_WARNING,
    TemplateContext,
    checklist,
    header,
    item,
    join_words,
    paragraph,
    table,
)
from backend.utils.helpers import format_currency, humanize_key, parse_currency

logger = logging.getLogger(__name__)


class _Numbered:
    """Section title numbering that shifts when optional sections are skipped."""

    def __init__(self):
        self.count = 0

    def __call__(self, title: str) -> dict:
        self.count += 1
        return header(f"{self.count}. {title}", level=2)


# =============================================================================
# Apostille
# =============================================================================

DOCUMENT_LABELS = {
    "birth_cert": "Birth Certificate",
    "marriage_cert": "Marriage Certificate",
    "divorce_decree": "Divorce Decree",
    "death_cert": "Death Certificate",
    "court_docs": "Court Documents",
    "diploma": "Diploma / Transcripts",
    "background_check": "FBI Background Check",
}

# Federal documents are apostilled by the U.S. Department of State, not a state office
FEDERAL_DOCUMENTS = ("background_check",)

FEDERAL_APOSTILLE_DETAIL = (
    "Federal documents are apostilled by the U.S. Department of State, "
    "Office of Authentications (mail only)."
)


def resolve_state(states: dict, value: Optional[str]) -> Optional[str]:
    """
    Map a state answer ('CA', 'ca', 'California') to a knowledge-base key.

    Returns:
        The key when known, the cleaned input when unknown, None when empty
    """
    if not value:
        return None
    cleaned = str(value).strip()
    if not cleaned or cleaned.lower() == "other":
        return None
    if cleaned.upper() in states:
        return cleaned.upper()
    for code, info in states.items():
        if info.get("name", "").lower() == cleaned.lower():
            return code
    return cleaned


def build_apostille_guide(ctx: TemplateContext) -> dict:
    """State-specific apostille instructions for the selected documents."""
    fields = ctx.fields
    states = ctx.knowledge.get("states", {})

    documents = fields.items("documents_needed", profile_key=None, default=["birth_cert"])
    urgency = fields.from_answers("urgency", default="flexible")

    birth_state = resolve_state(states, fields.value("birth_state", default=""))
    marriage_state = resolve_state(states, fields.value("marriage_state", default=""))
    spouse_birth_state = resolve_state(states, fields.from_profile("spouse_birth_state"))

    # state -> documents issued there, in first-seen order
    states_needed = {}
    if "birth_cert" in documents and birth_state:
        states_needed.setdefault(birth_state, []).append("Birth Certificate")
    if "birth_cert" in documents and spouse_birth_state and \
            fields.value("applicants", default="alone") in ("spouse", "spouse_kids"):
        states_needed.setdefault(spouse_birth_state, []).append("Spouse Birth Certificate")
    if "marriage_cert" in documents and marriage_state:
        states_needed.setdefault(marriage_state, []).append("Marriage Certificate")

    number = _Numbered()
    sections = [
        number("What is an Apostille?"),
        paragraph(
            "An apostille is an official certificate that authenticates the origin of a "
            "public document for use in another country."
        ),
        paragraph(
            f"France is part of the {ctx.knowledge.get('convention', 'Hague Apostille Convention (1961)')}. "
            f"Without an apostille, French authorities cannot verify that your US document is legitimate."
        ),
        number("Your Documents"),
        checklist([
            item(
                DOCUMENT_LABELS.get(doc, humanize_key(doc)),
                STATUS_TODO,
                FEDERAL_APOSTILLE_DETAIL if doc in FEDERAL_DOCUMENTS
                else "Apostilled by the state that issued the document.",
            )
            for doc in documents
        ]),
    ]

    window = ctx.lead_time("urgency", urgency)
    ordered = _order_by_processing_time(states_needed, states)

    state_blocks = []
    priorities = []
    for code, docs in ordered:
        info = states.get(code)
        if info is None:
            state_blocks.append(header(code, level=3))
            state_blocks.append(paragraph(
                f"We don't have verified apostille details for {code} yet. Contact that "
                f"state's Secretary of State office for {join_words(docs)}."
            ))
            continue

        processing = Duration.from_dict(info["processing_time"])
        state_blocks.append(header(f"{info.get('name', code)} ({code})", level=3))
        state_blocks.append(table(["Item", "Details"], [
            ["Documents", ", ".join(docs)],
            ["Agency", info["agency"]],
            ["Method", info["method"]],
            ["Cost", info["cost"]],
            ["Processing time", processing.label()],
            ["Website", info["url"]],
        ]))

        tight = window is not None and processing.max_days() > window.max_days()
        priorities.append(item(
            f"{info.get('name', code)}: submit {'immediately' if tight else 'early'}",
            STATUS_CRITICAL if tight else STATUS_OK,
            f"Processing takes {processing.label()}"
            + (f", longer than your {window.label()} window." if tight else "."),
        ))

    if state_blocks:
        sections.append(number("Your State-Specific Instructions"))
        sections.extend(state_blocks)

    if priorities:
        sections.append(number("Processing Priority"))
        sections.append(paragraph(
            "Offices are listed from the longest to the shortest processing time. "
            "Start with the first one."
        ))
        sections.append(checklist(priorities))

    return {
        "title": "Apostille Guide",
        "subtitle": "Personalized for Your Documents",
        "language": "en",
        "sections": sections,
        "metadata": {
            "documents": documents,
            "urgency": urgency,
            "states": [code for code, _ in ordered],
        },
    }


def _order_by_processing_time(states_needed: dict, states: dict) -> list:
    """Longest maximum processing time first; unknown states last, input order kept."""
    def sort_key(entry):
        code, _ = entry
        info = states.get(code)
        if info is None:
            return 1, 0
        return 0, -Duration.from_dict(info["processing_time"]).max_days()

    return sorted(states_needed.items(), key=sort_key)


# =============================================================================
# Pet relocation
# =============================================================================

def _pet_label(pet_types: list) -> str:
    if "both" in pet_types or ("dog" in pet_types and "cat" in pet_types):
        return "Dog & Cat"
    if "dog" in pet_types:
        return "Dog"
    if "cat" in pet_types:
        return "Cat"
    return "Pet"


def build_pet_guide(ctx: TemplateContext) -> dict:
    """EU entry requirements, timeline and travel logistics for pets."""
    fields = ctx.fields
    kb = ctx.knowledge

    pet_types = fields.items("pet_type", profile_key=None, default=["dog"])
    travel_method = fields.from_answers("travel_method", default="flying_cargo")
    microchipped = fields.from_answers("microchipped", default="no")
    rabies_status = fields.from_answers("rabies_status", default="unsure")
    move_timeline = fields.from_answers("move_timeline", default="3_6_months")
    rabies_wait = kb.get("rabies_wait_days", 21)
    certificate_window = kb.get("health_certificate_window_days", 10)

    number = _Numbered()
    sections = [
        number("EU Entry Requirements for Pets"),
        paragraph("To bring your pet to France, you must meet these mandatory requirements:"),
        checklist([
            item(
                "ISO Microchip (15-digit)",
                STATUS_DONE if microchipped == "yes_iso" else STATUS_TODO,
                "Must be ISO 11784/11785 compliant 15-digit microchip. CRITICAL: Must be "
                "implanted BEFORE rabies vaccination or vaccination is invalid.",
            ),
            item(
                "Rabies Vaccination",
                STATUS_DONE if rabies_status == "current" else STATUS_TODO,
                f"Must be administered at least {rabies_wait} days before travel by a licensed "
                f"veterinarian. Valid for up to 3 years depending on vaccine used.",
            ),
            item(
                "EU Health Certificate (APHIS Form 7001)",
                STATUS_TODO,
                f"Must be issued by USDA-accredited veterinarian within {certificate_window} days "
                f"of travel, then endorsed by USDA APHIS.",
            ),
        ]),
    ]

    timeline = []
    if microchipped != "yes_iso":
        timeline.append(["4+ months before", "Get ISO 15-digit microchip implanted at your vet"])
    if rabies_status != "current":
        timeline.append(["4+ months before", "Get rabies vaccination (must be AFTER microchip implantation)"])
    timeline.append(["30 days before", "Confirm all vaccinations are current and microchip is registered"])
    timeline.append([f"{rabies_wait}+ days before", f"Ensure rabies vaccination is at least {rabies_wait} days old (EU requirement)"])
    if "flying" in travel_method:
        timeline.append(["4-6 weeks before", "Contact airline about pet policy, book pet on flight"])
        timeline.append(["2-3 weeks before", "Purchase airline-approved carrier/crate if needed"])
    timeline.append([f"{certificate_window} days before", "Visit USDA-accredited vet for health examination"])
    timeline.append([f"{certificate_window} days before", "Vet completes EU Health Certificate (APHIS 7001)"])
    timeline.append(["7-10 days before", "Submit certificate to USDA APHIS for endorsement"])
    timeline.append(["2-3 days before", "Receive endorsed certificate from USDA (or use VEHCS for faster processing)"])
    timeline.append(["Travel day", "Carry all original documents with you (not in checked luggage)"])

    sections.append(number("Your Personalized Timeline"))
    sections.append(paragraph("Based on your situation, here's your step-by-step timeline:"))

    window = ctx.lead_time("move_timeline", move_timeline)
    needs_vaccination = microchipped != "yes_iso" or rabies_status != "current"
    if window is not None and needs_vaccination and window.max_days() < 4 * 30:
        sections.append(checklist([item(
            "Timeline is tight",
            STATUS_CRITICAL,
            f"Your move is {window.label()} away and the microchip/rabies sequence needs about "
            f"4 months. Talk to your vet this week.",
        )]))
    sections.append(table(["When", "Task"], timeline))

    travel_section = _pet_travel_section(travel_method, kb)
    if travel_section:
        title, intro, blocks = travel_section
        sections.append(number(title))
        sections.append(paragraph(intro))
        sections.extend(blocks)

    sections.append(number("Document Checklist"))
    sections.append(checklist([
        item("EU Health Certificate (APHIS 7001) - USDA endorsed original"),
        item("Rabies vaccination certificate (showing date and vaccine details)"),
        item("Microchip documentation (showing 15-digit ISO number)"),
        item("Proof of microchip implantation date (must be before rabies vaccine)"),
        item("Your passport and travel documents"),
        item("Pet's photo (in case documents need verification)"),
    ], title="Required Documents"))

    sections.append(number("Arriving in France"))
    sections.append(checklist([
        item("Proceed through customs with pet", STATUS_INFO),
        item("Have all documents ready for inspection", STATUS_INFO),
        item("Border officials may scan microchip to verify", STATUS_INFO),
    ], title="At the Airport"))
    sections.append(checklist([
        item("Register with local French veterinarian within first few weeks"),
        item("Get French pet passport (Passeport Européen pour Animaux) for future EU travel"),
        item("Update microchip registration with French address"),
        item("Consider pet insurance in France (assurance animaux)"),
    ], title="After Arrival"))

    sections.append(number("Useful Contacts & Resources"))
    sections.append(table(["Resource", "Where"], [
        ["USDA APHIS Pet Travel", "aphis.usda.gov/aphis/pet-travel"],
        ["VEHCS (electronic certification)", "aphis.usda.gov"],
        ["French Customs (Douane)", "douane.gouv.fr"],
        ["I-CAD (French microchip registry)", "i-cad.fr"],
        ["SPA (French animal welfare)", "la-spa.fr"],
    ]))

    return {
        "title": "Pet Relocation Guide to France",
        "subtitle": f"Personalized for Your {_pet_label(pet_types)}",
        "language": "en",
        "sections": sections,
        "metadata": {
            "pet_type": pet_types,
            "pet_count": fields.from_answers("pet_count", default="1"),
            "travel_method": travel_method,
        },
    }


def _pet_travel_section(travel_method: str, kb: dict):
    if travel_method == "flying_cabin":
        fees = kb.get("cabin_fees", {})
        return (
            "Flying with Pet in Cabin",
            "Since you plan to fly with your pet in the cabin, here's what you need to know:",
            [
                checklist([
                    item(f"Pet + carrier must typically weigh under {kb.get('cabin_weight_limit', '8kg')} total", STATUS_INFO),
                    item("Carrier must fit under seat in front of you", STATUS_INFO),
                    item("Pet must remain in carrier throughout flight", STATUS_INFO),
                    item("Book early - cabin pet spots are very limited (often 1-2 per cabin)", STATUS_WARNING),
                ], title="Cabin Requirements"),
                table(["Airline", "Approximate fee"], [[airline, fee] for airline, fee in fees.items()],
                      caption="Always confirm current fees when booking"),
            ],
        )
    if travel_method == "flying_cargo":
        return (
            "Flying with Pet in Cargo",
            "Since you plan to fly with your pet in cargo, here's what you need to know:",
            [
                checklist([
                    item("IATA-approved hard-sided crate required", STATUS_INFO),
                    item("Crate must be large enough for pet to stand, turn around, and lie down", STATUS_INFO),
                    item("No sedatives - airlines prohibit sedated animals", STATUS_INFO),
                    item("Temperature restrictions apply on some routes", STATUS_INFO),
                ], title="Cargo Requirements"),
                checklist([
                    item("Brachycephalic breeds (pugs, bulldogs, Persian cats) may be restricted or banned", STATUS_CRITICAL),
                    item(f"Cargo pet fees range {kb.get('cargo_fee_range', '$200-$500+ each way')}", STATUS_WARNING),
                    item("Book well in advance - cargo pet spots are limited", STATUS_WARNING),
                ], title="Important Warnings"),
            ],
        )
    if travel_method == "pet_transport":
        return (
            "Using a Pet Transport Service",
            "Professional pet transport services handle the logistics for you:",
            [
                checklist([
                    item("They handle all paperwork and USDA endorsement", STATUS_OK),
                    item("Door-to-door service available", STATUS_OK),
                    item("Experience with airline requirements", STATUS_OK),
                ], title="Benefits"),
                checklist([
                    item(f"Costs range {kb.get('transport_service_range', '$2,000-$5,000+')} depending on service level", STATUS_WARNING),
                    item("Get quotes from multiple providers and check reviews", STATUS_WARNING),
                ], title="Considerations"),
            ],
        )
    return None


# =============================================================================
# French mortgages
# =============================================================================

DEFAULT_PURCHASE_PRICE = 500000
DEFAULT_LOAN_AMOUNT = 400000
DEFAULT_LOAN_TERM = 20

FRENCH_TERMS = [
    ("Prêt immobilier", "Mortgage loan"),
    ("Taux nominal", "Nominal interest rate"),
    ("TAEG", "Annual Percentage Rate (APR)"),
    ("Mensualité", "Monthly payment"),
    ("IRA", "Early repayment penalties"),
    ("Remboursement anticipé", "Early repayment"),
    ("Assurance emprunteur", "Borrower insurance"),
    ("Délégation d'assurance", "External insurance option"),
    ("Hypothèque", "Mortgage (traditional lien)"),
    ("Caution", "Surety bond"),
    ("Frais de dossier", "Application fees"),
    ("Offre de prêt", "Loan offer"),
    ("Délai de réflexion", "Cooling-off period"),
    ("Notaire", "Notary"),
]

WORKSHEET_ROWS = [
    "Bank Name", "Nominal Rate", "TAEG (APR)", "Monthly Payment", "IRA Penalty Terms",
    "Application Fees", "Insurance Cost", "Guarantee Type", "Guarantee Fees",
    "Total Upfront Costs", "Your Notes",
]


def monthly_payment(principal: float, annual_rate: float, years: int) -> float:
    """Standard amortization payment."""
    n = years * 12
    if annual_rate == 0:
        return principal / n
    r = annual_rate / 12
    growth = (1 + r) ** n
    return principal * (r * growth) / (growth - 1)


def remaining_balance(principal: float, annual_rate: float, payment: float, years_paid: int) -> float:
    """Balance after paying `payment` monthly for `years_paid` years."""
    balance = principal
    r = annual_rate / 12
    for _ in range(years_paid * 12):
        balance -= payment - balance * r
    return balance


def _rate_tier(tiers: list, ltv: int) -> dict:
    for tier in tiers:
        if ltv <= tier.get("max_ltv", 100):
            return tier
    return tiers[-1] if tiers else {}


def _parse_year(value) -> Optional[int]:
    match = re.search(r"\b(\d{4})\b", str(value or ""))
    return int(match.group(1)) if match else None


def build_mortgage_guide(ctx: TemplateContext) -> dict:
    """Offer benchmarks, early payoff penalties and a comparison worksheet."""
    fields = ctx.fields
    kb = ctx.knowledge
    rate = kb.get("reference_rate", 0.035)

    purchase_price = parse_currency(fields.from_answers("purchase_price")) or DEFAULT_PURCHASE_PRICE
    loan_amount = parse_currency(fields.from_answers("loan_amount"))
    if loan_amount is None:
        loan_amount = DEFAULT_LOAN_AMOUNT
    down_payment = purchase_price - loan_amount
    ltv = round(loan_amount / purchase_price * 100)

    term_answer = str(fields.from_answers("loan_term", default=DEFAULT_LOAN_TERM))
    loan_term = int(term_answer) if term_answer.isdigit() else DEFAULT_LOAN_TERM

    payment = round(monthly_payment(loan_amount, rate, loan_term)) if loan_amount else 0

    payoff_year = _parse_year(fields.from_answers("early_payoff_year"))
    years_until_payoff = payoff_year - ctx.as_of.year if payoff_year else 0
    show_payoff = 0 < years_until_payoff < loan_term

    target_location = fields.from_profile("target_location", "France")
    tier = _rate_tier(kb.get("ltv_tiers", []), ltv)

    number = _Numbered()
    sections = [
        header("Your Loan at a Glance", level=2),
        table(["Item", "Value"], [
            ["Loan amount", format_currency(loan_amount)],
            ["Purchase price", format_currency(purchase_price)],
            ["Down payment", f"{format_currency(down_payment)} ({ltv}% LTV)"],
            ["Loan term", f"{loan_term} years"],
            ["Target location", str(target_location)],
            [f"Estimated monthly payment at {rate * 100:.1f}%", format_currency(payment)],
        ]),
        number("Offer Quality Benchmarks"),
        paragraph(
            "Use these benchmarks to assess whether mortgage offers are excellent, average, "
            "or poor for your situation."
        ),
        checklist([
            item(f"Interest Rate: {tier.get('excellent', 'n/a')}", STATUS_OK),
            item(f"Monthly Payment: {format_currency(payment - 50)} - {format_currency(payment)}", STATUS_OK),
            item("Early Repayment Penalties (IRA): Waived or maximum 1%", STATUS_OK),
            item("Application Fees: Waived or under €500", STATUS_OK),
            item("Insurance: External insurance allowed", STATUS_OK),
        ], title="Excellent Offer (Best Case)"),
        checklist([
            item(f"Interest Rate: {tier.get('average', 'n/a')}", STATUS_WARNING),
            item(f"Monthly Payment: {format_currency(payment)} - {format_currency(payment + 70)}", STATUS_WARNING),
            item("Early Repayment Penalties: Standard 6 months interest or 3%", STATUS_WARNING),
            item("Application Fees: €500 - €1,200", STATUS_WARNING),
            item("Guarantee Fees: 1.5% - 2%", STATUS_WARNING),
        ], title="Average Offer (Acceptable)"),
        checklist([
            item(f"Interest Rate: {tier.get('poor', 'n/a')}", STATUS_CRITICAL),
            item(f"Monthly Payment: {format_currency(payment + 120)}+", STATUS_CRITICAL),
            item("Early Repayment Penalties: 3% with no flexibility", STATUS_CRITICAL),
            item("Insurance: Bank only, no external option", STATUS_CRITICAL),
            item("Only 1 offer or pressure tactics", STATUS_CRITICAL),
        ], title="Poor Offer (Reject)"),
    ]

    penalty = None
    if show_payoff:
        balance = round(remaining_balance(loan_amount, rate, payment, years_until_payoff))
        interest_months = kb.get("ira_interest_months", 6)
        ira_interest = round(balance * rate * interest_months / 12)
        ira_cap = round(balance * kb.get("ira_balance_cap", 0.03))
        penalty = min(ira_interest, ira_cap)

        sections.append(number(f"Early Payoff Analysis ({payoff_year})"))
        sections.append(paragraph(
            f"Based on your plan to pay off in {payoff_year}, here's what to expect."
        ))
        sections.append(table(["Calculation", "Amount"], [
            ["Estimated Remaining Balance", format_currency(balance)],
            [f"Standard IRA ({interest_months} months interest)", format_currency(ira_interest)],
            ["Maximum IRA (3% of balance)", format_currency(ira_cap)],
            ["Your Penalty (whichever is lower)", format_currency(penalty)],
        ]))
        sections.append(paragraph(
            f"IMPORTANT: Negotiate to have IRA penalties waived or reduced. Saving "
            f"{format_currency(penalty)} in penalties could offset broker fees entirely."
        ))

    sections.append(number("Critical Questions to Ask"))
    sections.append(checklist([
        item("What is the nominal interest rate (taux nominal)?"),
        item("What is the APR/TAEG (includes all fees)?"),
        item("What is the exact monthly payment (mensualité)?"),
        item("What are the total fees over the loan term?"),
    ], title="Interest Rate & Costs"))
    sections.append(checklist([
        item("What are the early repayment penalties (IRA)?"),
        item("Can penalties be waived or reduced?"),
        item("Are penalties different for partial vs. full repayment?"),
        item("Do penalties decrease over time?"),
    ], title="Early Repayment Terms"))
    sections.append(checklist([
        item("What insurance (assurance emprunteur) is required?"),
        item("Can I use external insurance (délégation d'assurance)?"),
        item("Is it a mortgage (hypothèque) or surety bond (caution)?"),
        item("What are the guarantee fees?"),
    ], title="Insurance & Guarantee"))

    cooling_off = kb.get("cooling_off_days", 10)
    sections.append(number("Key French Mortgage Terms"))
    sections.append(table(["French", "English"], [
        [fr, f"{en} ({cooling_off} days)" if fr == "Délai de réflexion" else en]
        for fr, en in FRENCH_TERMS
    ]))

    sections.append(number("Offer Comparison Worksheet"))
    sections.append(table(["", "Bank A", "Bank B", "Bank C"], [[row, "", "", ""] for row in WORKSHEET_ROWS]))

    sections.append(number("Decision Framework"))
    sections.append(checklist([
        item("Scenario A: Strong Offers", STATUS_OK,
             "Multiple competitive offers, rates at target or below, IRA flexibility. "
             "Accept best offer and proceed confidently."),
        item("Scenario B: Acceptable Offers", STATUS_WARNING,
             "Rates slightly high, standard IRA terms, limited offers. Push back and ask "
             "broker to renegotiate or submit to more banks."),
        item("Scenario C: Poor Offers", STATUS_CRITICAL,
             "Only 1 offer, rates above target, no IRA flexibility. Give broker ONE chance "
             "to improve, then consider alternatives."),
    ]))

    return {
        "title": "French Mortgage Evaluation Guide",
        "language": "en",
        "sections": sections,
        "metadata": {
            "loan_amount": loan_amount,
            "purchase_price": purchase_price,
            "ltv": ltv,
            "loan_term": loan_term,
            "monthly_payment": payment,
            "early_payoff_penalty": penalty,
        },
    }


# =============================================================================
# Bank ratings
# =============================================================================

def rank_banks(banks: list, needs: list, english: str, online: str, penalties: dict) -> list:
    """
    Score banks against needs; highest score first.

    Ties keep the knowledge-base order.
    """
    ranked = []
    for bank in banks:
        score = float(bank.get("rating", 0))
        if english == "essential" and not bank.get("english"):
            score -= penalties.get("english_essential_missing", 2.0)
        if online == "essential" and not bank.get("online"):
            score -= penalties.get("online_essential_missing", 1.0)
        if "mortgage" in needs and not bank.get("mortgage"):
            score -= penalties.get("mortgage_missing", 1.5)
        ranked.append(dict(bank, final_score=round(score, 2)))

    return sorted(ranked, key=lambda b: -b["final_score"])


def build_bank_guide(ctx: TemplateContext) -> dict:
    """Top banks for the member's needs."""
    fields = ctx.fields
    kb = ctx.knowledge

    needs = fields.items("banking_needs", profile_key=None, default=["daily"])
    english = fields.from_answers("english_support", default="preferred")
    online = fields.from_answers("online_banking", default="important")

    ranked = rank_banks(kb.get("banks", []), needs, english, online, kb.get("penalties", {}))
    top = ranked[:kb.get("top_n", 3)]

    number = _Numbered()
    sections = [
        number("Your Top Recommended Banks"),
        paragraph("Based on your needs, here are the best banks for you:"),
    ]

    if not top:
        sections.append(paragraph("Bank ratings are not available right now."))
    else:
        sections.append(table(
            ["Bank", "Score", "English support", "Online banking", "Mortgages"],
            [
                [b["name"], f"{b['final_score']:.1f}",
                 "Yes" if b.get("english") else "No",
                 "Yes" if b.get("online") else "No",
                 "Yes" if b.get("mortgage") else "No"]
                for b in top
            ],
        ))
        for bank in top:
            sections.append(header(bank["name"], level=3))
            sections.append(checklist(
                [item(p, STATUS_OK) for p in bank.get("pros", [])]
                + [item(c, STATUS_WARNING) for c in bank.get("cons", [])]
            ))

    return {
        "title": "French Bank Ratings Guide",
        "subtitle": "Personalized Recommendations",
        "language": "en",
        "sections": sections,
        "metadata": {
            "needs": needs,
            "ranking": [b["name"] for b in top],
        },
    }


GUIDE_TEMPLATES = {
    "apostille": build_apostille_guide,
    "pet-relocation": build_pet_guide,
    "french-mortgages": build_mortgage_guide,
    "bank-ratings": build_bank_guide,
}


def register_guide_templates(registry):
    """Register every plain guide template on a TemplateRegistry."""
    for type_id, template in GUIDE_TEMPLATES.items():
        registry.register(type_id, template, kind="guide")
