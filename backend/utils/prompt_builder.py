"""
Prompt Builder - Versioned prompt templates with named slots

Responsibilities:
- Define one fixed, versioned prompt template per guide type
- Resolve every slot from answers, profile, knowledge snapshot or call context
- Substitute a declared default when a slot's sources are all absent
- Fail fast on malformed templates (undeclared or unused slots)

NOT responsible for:
- Calling the text-generation service
- Parsing responses
- Deciding whether AI is enabled

Design principles:
- Fail-fast validation at construction (no partial templates)
- The builder has no branching beyond "is this source value present"
- Changing a template's slot set is the only way prompt behavior changes
- Output never contains a raw template token
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from string import Template
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.utils.helpers import format_currency, parse_currency, split_multi_value

logger = logging.getLogger(__name__)


class PromptBuildError(Exception):
    """Raised when a template is malformed or a prompt cannot be built"""
    pass


class SlotSource(str, Enum):
    """
    Where a slot value may come from.

    REFERENCE takes no key: it renders the whole knowledge snapshot.
    """
    ANSWERS = "answers"
    PROFILE = "profile"
    KNOWLEDGE = "knowledge"
    CONTEXT = "context"
    REFERENCE = "reference"


@dataclass(frozen=True)
class Slot:
    """
    One named hole in a prompt template.

    Attributes:
        name: Identifier used as $name in the template body
        sources: Ordered (SlotSource, key) pairs; first present value wins
        default: Text used when every source is absent
        labels: Optional value -> display text mapping
        joiner: Separator for list values
        multi: Comma-joined strings are split like list answers
        currency: Format numeric values as euro amounts
    """
    name: str
    sources: Tuple[Tuple[SlotSource, str], ...]
    default: str
    labels: Optional[Dict[str, str]] = None
    joiner: str = ", "
    multi: bool = False
    currency: bool = False

    def __post_init__(self):
        if not self.name or not re.fullmatch(r"[a-z_][a-z0-9_]*", self.name):
            raise PromptBuildError(f"Slot name must be a lowercase identifier, got: {self.name!r}")

        if not self.sources:
            raise PromptBuildError(f"Slot '{self.name}' declares no sources")

        for source, key in self.sources:
            if not isinstance(source, SlotSource):
                raise PromptBuildError(
                    f"Slot '{self.name}' source must be SlotSource, got: {source!r}"
                )
            if source != SlotSource.REFERENCE and not key:
                raise PromptBuildError(f"Slot '{self.name}' has an empty {source.value} key")

        if not isinstance(self.default, str) or not self.default:
            raise PromptBuildError(f"Slot '{self.name}' needs a non-empty default")


@dataclass(frozen=True)
class PromptTemplate:
    """
    Fixed prompt text for one guide type.

    Body placeholders use string.Template syntax ($name); a literal
    dollar sign is written $$.
    """
    guide_type: str
    version: str
    slots: Tuple[Slot, ...]
    body: str

    def __post_init__(self):
        if not self.guide_type:
            raise PromptBuildError("guide_type must be non-empty")
        if not self.version:
            raise PromptBuildError(f"Template '{self.guide_type}' missing version")

        names = [slot.name for slot in self.slots]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise PromptBuildError(f"Template '{self.guide_type}' declares duplicate slots: {duplicates}")

        used = _body_identifiers(self.body)
        undeclared = sorted(used - set(names))
        if undeclared:
            raise PromptBuildError(
                f"Template '{self.guide_type}' uses undeclared slots: {undeclared}"
            )
        unused = sorted(set(names) - used)
        if unused:
            raise PromptBuildError(
                f"Template '{self.guide_type}' declares unused slots: {unused}"
            )


def _body_identifiers(body: str) -> set:
    identifiers = set()
    for match in Template.pattern.finditer(body):
        if match.group("invalid") is not None:
            raise PromptBuildError(
                f"Invalid placeholder near position {match.start('invalid')}: "
                f"escape literal dollar signs as $$"
            )
        name = match.group("named") or match.group("braced")
        if name:
            identifiers.add(name)
    return identifiers


def format_reference_data(snapshot: Optional[dict]) -> str:
    """Render a knowledge snapshot as stable, indented JSON."""
    if not snapshot:
        return ""
    return json.dumps(snapshot, indent=2, sort_keys=True, ensure_ascii=False)


class PromptBuilder:
    """
    Build prompts from registered templates.

    Pure function: (guide_type, answers, profile, snapshot, context) -> text
    No state beyond the template registry, deterministic output.
    """

    def __init__(self, templates: Optional[Iterable[PromptTemplate]] = None):
        """
        Args:
            templates: Templates to register (defaults to DEFAULT_TEMPLATES)

        Raises:
            PromptBuildError: If two templates share a guide type
        """
        self._templates: Dict[str, PromptTemplate] = {}
        for template in (DEFAULT_TEMPLATES if templates is None else templates):
            if template.guide_type in self._templates:
                raise PromptBuildError(f"Duplicate template for guide type: {template.guide_type}")
            self._templates[template.guide_type] = template

        logger.info(f"Prompt builder initialized with {len(self._templates)} templates")

    def has(self, guide_type: str) -> bool:
        return guide_type in self._templates

    def guide_types(self) -> List[str]:
        return list(self._templates)

    def version(self, guide_type: str) -> str:
        return self._get(guide_type).version

    def build(
        self,
        guide_type: str,
        answers: Optional[dict],
        profile: Optional[dict],
        knowledge_snapshot: Optional[dict] = None,
        context: Optional[dict] = None
    ) -> str:
        """
        Interpolate every slot of the guide's template.

        Args:
            guide_type: Registered template key
            answers: Answer Store (or verification user context)
            profile: Profile Record
            knowledge_snapshot: Reference data for the topic
            context: Call-level values (current date, follow-up question, ...)

        Returns:
            Complete prompt text

        Raises:
            PromptBuildError: If guide_type has no template
        """
        template = self._get(guide_type)

        sources = {
            SlotSource.ANSWERS: answers or {},
            SlotSource.PROFILE: profile or {},
            SlotSource.KNOWLEDGE: knowledge_snapshot or {},
            SlotSource.CONTEXT: context or {},
        }

        values = {}
        defaulted = []
        for slot in template.slots:
            text = self._resolve(slot, sources, knowledge_snapshot)
            if text is None:
                text = slot.default
                defaulted.append(slot.name)
            values[slot.name] = text

        if defaulted:
            logger.debug(f"Prompt {guide_type} v{template.version} used defaults for: {defaulted}")

        return Template(template.body).substitute(values)

    def _get(self, guide_type: str) -> PromptTemplate:
        template = self._templates.get(guide_type)
        if template is None:
            raise PromptBuildError(f"No prompt template for guide type: {guide_type}")
        return template

    def _resolve(self, slot: Slot, sources: dict, snapshot: Optional[dict]) -> Optional[str]:
        for source, key in slot.sources:
            if source == SlotSource.REFERENCE:
                text = format_reference_data(snapshot)
                if text:
                    return text
                continue

            value = sources[source].get(key)
            text = self._format(slot, value)
            if text:
                return text
        return None

    def _format(self, slot: Slot, value: Any) -> str:
        if value is None:
            return ""

        if isinstance(value, (list, tuple)) or slot.multi:
            items = split_multi_value(value)
            return slot.joiner.join(self._label(slot, item) for item in items)

        if slot.currency:
            amount = parse_currency(value)
            if amount is not None:
                return format_currency(amount)

        if isinstance(value, dict):
            return json.dumps(value, sort_keys=True, ensure_ascii=False)

        return self._label(slot, str(value).strip())

    def _label(self, slot: Slot, value: str) -> str:
        if slot.labels and value in slot.labels:
            return slot.labels[value]
        return value


def current_date_text(as_of: date) -> str:
    """'June 3, 2025' style date used in prompts."""
    return f"{as_of.strftime('%B')} {as_of.day}, {as_of.year}"


# =============================================================================
# Templates
# =============================================================================

A = SlotSource.ANSWERS
P = SlotSource.PROFILE
K = SlotSource.KNOWLEDGE
C = SlotSource.CONTEXT
R = SlotSource.REFERENCE

OUTPUT_FORMAT = (
    "Format the response as Markdown. Start every main section with a line of the form "
    "'## SECTION NAME' using the section names above, use '###' for subsections, "
    "'-' for lists and tables where they help. Keep the tone professional but warm and reassuring."
)

_COMMON_SLOTS = (
    Slot("user_name", ((C, "user_name"), (P, "legal_first_name"), (P, "display_name")), "Member"),
    Slot("current_date", ((C, "current_date"),), "today"),
    Slot("reference_data", ((R, ""),), "No reference data available."),
)


PET_TEMPLATE = PromptTemplate(
    guide_type="pet-relocation",
    version="2025.1",
    slots=_COMMON_SLOTS + (
        Slot("pet_type", ((A, "pet_type"),), "dog", joiner=" and ", multi=True,
             labels={"dog": "dog", "cat": "cat", "both": "dog and cat", "other": "other pet"}),
        Slot("pet_count", ((A, "pet_count"),), "1", labels={"3_plus": "3 or more"}),
        Slot("travel_method", ((A, "travel_method"),), "flying with pet in cargo/hold", labels={
            "flying_cabin": "flying with pet in the cabin",
            "flying_cargo": "flying with pet in cargo/hold",
            "driving": "driving to France (through UK/Europe)",
            "pet_transport": "using a professional pet transport service",
            "unsure": "not yet decided on travel method",
        }),
        Slot("microchipped", ((A, "microchipped"),), "no", labels={
            "yes_iso": "yes, ISO 15-digit chip",
            "yes_other": "yes, non-ISO chip",
            "no": "no",
        }),
        Slot("rabies_status", ((A, "rabies_status"),), "unsure"),
        Slot("move_timeline", ((A, "move_timeline"),), "3-6 months", labels={
            "under_30": "less than 30 days",
            "1_3_months": "1-3 months",
            "3_6_months": "3-6 months",
            "6_plus": "6+ months",
        }),
        Slot("rabies_wait_days", ((K, "rabies_wait_days"),), "21"),
        Slot("certificate_window_days", ((K, "health_certificate_window_days"),), "10"),
        Slot("output_format", ((C, "output_format"),), OUTPUT_FORMAT),
    ),
    body="""You are an expert in international pet relocation, specifically helping Americans move their pets to France. Generate a comprehensive, personalized guide for this specific situation.

USER SITUATION:
- Name: $user_name
- Pet type: $pet_type
- Number of pets: $pet_count
- Travel method: $travel_method
- Current microchip status: $microchipped
- Current rabies vaccination status: $rabies_status
- Timeline to move: $move_timeline
- Current date: $current_date

REFERENCE DATA (use these figures, they are kept up to date):
$reference_data

Generate a detailed, personalized pet relocation guide that includes:

1. EXECUTIVE SUMMARY - A brief overview of what they need to do and their timeline urgency
2. EU ENTRY REQUIREMENTS - ISO 15-digit microchip (implanted BEFORE rabies vaccination), rabies vaccination (at least $rabies_wait_days days before travel), EU Health Certificate (APHIS Form 7001, issued within $certificate_window_days days of travel). Mark which ones they've already completed.
3. PERSONALIZED TIMELINE - Specific dates and deadlines based on their move date and current status
4. TRAVEL METHOD DETAILS - Airline policies and fees, carrier/crate requirements, booking tips, breed restrictions
5. STEP-BY-STEP PROCESS - USDA-accredited veterinarian, health certificate, USDA APHIS endorsement, VEHCS, French customs
6. COSTS BREAKDOWN - Veterinary visits, microchip, vaccinations, certificate, endorsement, airline fees, total
7. DOCUMENT CHECKLIST
8. ARRIVAL IN FRANCE - Customs, French vet, French pet passport, pet insurance
9. EMERGENCY CONTACTS & RESOURCES

Be specific, actionable, and personalized. If they're flying in cabin, don't talk about cargo. If their microchip is already done, acknowledge that.

$output_format""",
)


MORTGAGE_TEMPLATE = PromptTemplate(
    guide_type="french-mortgages",
    version="2025.1",
    slots=_COMMON_SLOTS + (
        Slot("purchase_price", ((A, "purchase_price"),), "€500,000", currency=True),
        Slot("loan_amount", ((A, "loan_amount"),), "€400,000", currency=True),
        Slot("target_rate", ((A, "target_rate"),), "unsure", labels={
            "3.0-3.3": "3.0% - 3.3%",
            "3.4-3.6": "3.4% - 3.6%",
            "3.7-4.0": "3.7% - 4.0%",
        }),
        Slot("loan_term", ((A, "loan_term"),), "20"),
        Slot("early_payoff", ((A, "early_payoff"),), "no", labels={
            "yes_2_3": "yes, within 2-3 years",
            "yes_5_10": "yes, within 5-10 years",
            "maybe": "maybe",
            "no": "no",
        }),
        Slot("early_payoff_year", ((A, "early_payoff_year"),), "not applicable"),
        Slot("using_broker", ((A, "using_broker"),), "considering"),
        Slot("closing_timeline", ((A, "closing_timeline"),), "3-4 months", labels={
            "1_2_months": "1-2 months",
            "3_4_months": "3-4 months",
            "6_months": "about 6 months",
            "flexible": "flexible",
        }),
        Slot("target_location", ((P, "target_location"),), "France"),
        Slot("ira_interest_months", ((K, "ira_interest_months"),), "6"),
        Slot("output_format", ((C, "output_format"),), OUTPUT_FORMAT),
    ),
    body="""You are an expert in French mortgages for American buyers. Generate a comprehensive, personalized mortgage evaluation guide.

USER SITUATION:
- Name: $user_name
- Purchase price: $purchase_price
- Loan amount needed: $loan_amount
- Target interest rate: $target_rate
- Loan term: $loan_term years
- Early payoff plans: $early_payoff
- Early payoff year: $early_payoff_year
- Using a broker: $using_broker
- Closing timeline: $closing_timeline
- Target location in France: $target_location
- Current date: $current_date

REFERENCE DATA (use these figures, they are kept up to date):
$reference_data

Generate a detailed mortgage evaluation guide including:

1. EXECUTIVE SUMMARY
2. OFFER QUALITY BENCHMARKS - EXCELLENT, ACCEPTABLE and POOR tiers with specific rate ranges, fees and terms
3. EARLY REPAYMENT ANALYSIS (if they plan early payoff) - remaining balance at payoff date, IRA penalty ($ira_interest_months months interest vs 3% rule), negotiation strategies
4. CRITICAL QUESTIONS CHECKLIST - rates and TAEG, early repayment, insurance, guarantee types, fees
5. FRENCH MORTGAGE TERMS GLOSSARY
6. BANK COMPARISON WORKSHEET
7. DECISION FRAMEWORK
8. NEGOTIATION TIPS
9. TIMELINE & PROCESS - from application to closing

Be specific with numbers and calculations based on their inputs.

$output_format""",
)


APOSTILLE_TEMPLATE = PromptTemplate(
    guide_type="apostille",
    version="2025.1",
    slots=_COMMON_SLOTS + (
        Slot("documents_needed", ((A, "documents_needed"),), "Birth Certificate", multi=True, labels={
            "birth_cert": "Birth Certificate",
            "marriage_cert": "Marriage Certificate",
            "divorce_decree": "Divorce Decree",
            "death_cert": "Death Certificate",
            "court_docs": "Court Documents",
            "diploma": "Diploma / Transcripts",
            "background_check": "FBI Background Check",
        }),
        Slot("urgency", ((A, "urgency"),), "flexible", labels={
            "asap": "as soon as possible (within 2 weeks)",
            "2_4_weeks": "within 2-4 weeks",
            "flexible": "flexible (2+ months)",
        }),
        Slot("birth_state", ((A, "birth_state"), (P, "birth_state")), "not specified"),
        Slot("spouse_birth_state", ((P, "spouse_birth_state"),), "not specified"),
        Slot("marriage_state", ((A, "marriage_state"), (P, "marriage_state")), "not specified"),
        Slot("output_format", ((C, "output_format"),), OUTPUT_FORMAT),
    ),
    body="""You are an expert in US document authentication and apostilles for use in France. Generate a comprehensive, personalized apostille guide.

USER SITUATION:
- Name: $user_name
- Documents needed: $documents_needed
- Urgency: $urgency
- Birth state: $birth_state
- Spouse birth state: $spouse_birth_state
- Marriage state: $marriage_state
- Current date: $current_date

REFERENCE DATA (state agencies, fees and processing times):
$reference_data

Generate a detailed apostille guide including:

1. WHAT IS AN APOSTILLE
2. YOUR DOCUMENTS - for each document: which state to contact, agency, fees, processing times (standard vs expedited), online vs mail, official website
3. STEP-BY-STEP PROCESS - certified copies, applications, payment, mailing, tracking
4. TIMELINE - realistic for their urgency; start with the slowest office
5. COSTS BREAKDOWN
6. EXPEDITED OPTIONS
7. COMMON MISTAKES TO AVOID
8. CHECKLIST

Be specific with state agencies, fees, and timelines.

$output_format""",
)


BANK_TEMPLATE = PromptTemplate(
    guide_type="bank-ratings",
    version="2025.1",
    slots=_COMMON_SLOTS + (
        Slot("banking_needs", ((A, "banking_needs"),), "daily banking", multi=True, labels={
            "daily": "daily banking",
            "mortgage": "mortgage",
            "savings": "savings",
            "transfers": "international transfers",
        }),
        Slot("english_support", ((A, "english_support"),), "preferred"),
        Slot("online_banking", ((A, "online_banking"),), "important"),
        Slot("output_format", ((C, "output_format"),), OUTPUT_FORMAT),
    ),
    body="""You are an expert in French banking for American expats. Generate a comprehensive, personalized bank comparison guide.

USER SITUATION:
- Name: $user_name
- Banking needs: $banking_needs
- English support importance: $english_support
- Online banking importance: $online_banking
- Current date: $current_date

REFERENCE DATA (bank ratings and features):
$reference_data

Generate a detailed French bank comparison guide including:

1. TOP RECOMMENDATIONS - the best 3-4 banks for their needs, with pros and cons, English support, online banking, fees, ease of opening as an American
2. DETAILED BANK PROFILES
3. OPENING AN ACCOUNT - required documents, proof of address, FATCA, timeline
4. COSTS COMPARISON - monthly, card, international transfer and ATM fees
5. SPECIAL CONSIDERATIONS FOR AMERICANS
6. RECOMMENDATIONS BY NEED - mortgages, daily banking, online-only, English speakers

Be specific and actionable.

$output_format""",
)


HEALTH_VERIFICATION_TEMPLATE = PromptTemplate(
    guide_type="health-verification",
    version="2025.1",
    slots=(
        Slot("visa_type", ((A, "visa_type"), (P, "visa_type")), "long-stay visa", labels={
            "visitor": "long-stay visitor visa",
            "talent_passport": "Talent Passport visa",
            "student": "student visa",
            "family": "family visa",
            "retirement": "long-stay visitor visa (retirement)",
        }),
        Slot("planned_duration", ((A, "planned_duration"), (P, "planned_duration")), "one year or more"),
        Slot("minimum_coverage", ((K, "minimum_coverage"),), "€30,000 (about $33,000 USD)"),
        Slot("schengen_countries", ((K, "schengen_countries"),), "26"),
    ),
    body="""You are an expert document reviewer helping Americans relocate to France. Analyze this health insurance certificate/policy document and determine if it meets the requirements for a French $visa_type.

## French Health Insurance Requirements for Visa Applications

The health insurance must meet ALL of these requirements:
1. Minimum Coverage Amount: at least $minimum_coverage in medical coverage
2. Hospitalization Coverage: must explicitly cover hospital stays and medical treatment
3. Repatriation Coverage: must include medical repatriation/evacuation back to home country
4. Geographic Coverage: must be valid in France AND all Schengen Area countries ($schengen_countries European countries)
5. Duration: must cover the entire planned stay period ($planned_duration)
6. No Deductible Issues: policies with very high deductibles may be problematic

## Your Analysis Task

1. Overall Assessment: "VERIFIED" if all requirements appear to be met, "ISSUES" if some are unclear or potentially not met, "INSUFFICIENT" if the document clearly doesn't meet requirements
2. Requirement Checklist: for each requirement, ✅ Met, ⚠️ Unclear, or ❌ Not Met
3. Specific Findings: quote or reference specific parts of the document
4. Recommendations: specific advice if there are issues

## Response Format

Structure your response exactly as follows:

ASSESSMENT: [VERIFIED/ISSUES/INSUFFICIENT]

CHECKLIST:
- Coverage Amount: [✅/⚠️/❌] [brief explanation]
- Hospitalization: [✅/⚠️/❌] [brief explanation]
- Repatriation: [✅/⚠️/❌] [brief explanation]
- Schengen Coverage: [✅/⚠️/❌] [brief explanation]
- Duration: [✅/⚠️/❌] [brief explanation]
- Deductible: [✅/⚠️/❌] [brief explanation]

FINDINGS:
[Your detailed findings with specific references to the document]

RECOMMENDATIONS:
[Any advice for the applicant, or confirmation that they're good to proceed]

IMPORTANT NOTES:
- If the document is hard to read, mention that
- If this doesn't appear to be a health insurance document, say so clearly
- French consulates can be strict, so err on the side of caution
- The final determination is always made by the French consulate""",
)


HEALTH_FOLLOWUP_TEMPLATE = PromptTemplate(
    guide_type="health-verification-followup",
    version="2025.1",
    slots=(
        Slot("question", ((C, "question"),), "Is my coverage sufficient?"),
        Slot("previous_status", ((C, "status"),), "unclear"),
        Slot("previous_findings", ((C, "findings"),), "No findings were recorded."),
        Slot("previous_recommendations", ((C, "recommendations"),), "No recommendations were recorded."),
        Slot("minimum_coverage", ((K, "minimum_coverage"),), "€30,000 (about $33,000 USD)"),
    ),
    body="""You are an expert document reviewer helping Americans relocate to France. You previously reviewed the member's health insurance document for a French visa application.

PREVIOUS REVIEW:
- Overall status: $previous_status
- Findings: $previous_findings
- Recommendations: $previous_recommendations

French visa health insurance must provide at least $minimum_coverage of medical coverage, including hospitalization and repatriation, valid in all Schengen countries for the full stay.

MEMBER QUESTION:
$question

Answer the question directly in a few short paragraphs of plain text. If the answer depends on something the review could not confirm, say so and tell the member what to check with their insurer. The final determination is always made by the French consulate.""",
)


DEFAULT_TEMPLATES = (
    PET_TEMPLATE,
    MORTGAGE_TEMPLATE,
    APOSTILLE_TEMPLATE,
    BANK_TEMPLATE,
    HEALTH_VERIFICATION_TEMPLATE,
    HEALTH_FOLLOWUP_TEMPLATE,
)
