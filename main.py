"""
Console Test Harness for FlowManager

Runs one document or guide flow in the terminal:

    python main.py cover-letter
    python main.py apostille --ai

Without a flow type, lists the available flows.
"""

import json
import logging
import os
import sys

from backend.commands import GenerateOutput, StartFlow, SubmitAnswer
from backend.config import load_settings
from backend.core.flow_manager import FlowManager
from backend.core.flow_state_machine import FlowStateMachine
from backend.core.guide_enricher import GuideEnricher
from backend.core.question_catalog import QuestionCatalog
from backend.core.template_assembler import TemplateAssembler, build_default_registry
from backend.results import IllegalCommand, OutputReady, TemplateNotFound
from backend.utils.helpers import generate_document_filename
from backend.utils.knowledge_base import KnowledgeBase

from app import build_text_client

logger = logging.getLogger(__name__)

EXIT_WORDS = ('quit', 'exit', 'stop')
OUTPUT_DIR = "outputs/documents"


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_prompt(prompt):
    """Print a question with numbered options"""
    marker = " (last question)" if prompt['is_last_question'] else ""
    print(f"\n{prompt['prompt']}{marker}")

    for i, option in enumerate(prompt['options'], start=1):
        print(f"  {i}. {option['label']}")

    if prompt['type'] == 'multi_choice':
        print("  (numbers separated by commas)")
    if prompt.get('placeholder'):
        print(f"  e.g. {prompt['placeholder']}")
    if prompt.get('suggestion'):
        print(f"  [from your profile: {prompt['suggestion']}]")


def print_intro(intro):
    """Print the flow title and the profile facts to confirm"""
    print(f"{intro['title']} ({intro['question_count']} questions)")
    if intro['profile_summary']:
        print("\nFrom your profile:")
        for entry in intro['profile_summary']:
            print(f"  {entry['label']}: {entry['value']}")


def resolve_input(prompt, user_input):
    """Map option numbers to option values; other input passes through"""
    options = prompt['options']
    if not options:
        return user_input

    values = []
    for part in user_input.split(','):
        part = part.strip()
        if part.isdigit() and 1 <= int(part) <= len(options):
            values.append(options[int(part) - 1]['value'])
        else:
            values.append(part)

    if prompt['type'] == 'multi_choice':
        return values
    return values[0] if values else user_input


def print_description(output: OutputReady):
    """Print the assembled document section by section"""
    description = output.description
    print_separator()
    print(description.title)
    if description.subtitle:
        print(description.subtitle)
    print_separator()

    for section in description.sections:
        kind = section.get('type')
        if kind == 'header':
            print(f"\n{'#' * section.get('level', 1)} {section['text']}")
            for line in section.get('lines', []):
                print(line)
        elif kind == 'paragraph':
            print(f"\n{section['text']}")
        elif kind == 'table':
            print()
            if section.get('caption'):
                print(section['caption'])
            for row in [section['columns']] + section['rows']:
                print("  " + " | ".join(str(cell) for cell in row))
        elif kind == 'checklist':
            print()
            if section.get('title'):
                print(section['title'])
            for entry in section['items']:
                detail = f" - {entry['detail']}" if entry.get('detail') else ""
                print(f"  [{entry['status']}] {entry['label']}{detail}")

    if output.guide_content and output.guide_content.structured:
        print_separator("-")
        print("AI GUIDE")
        for section in output.guide_content.structured.get('sections', []):
            print(f"\n## {section['title']}\n{section['body']}")

    for warning in output.warnings:
        print(f"\nNote: {warning}")


def save_output(output: OutputReady) -> str:
    """Write the description (and guide content) as JSON"""
    os.makedirs(OUTPUT_DIR, exist_ok=True)
    path = os.path.join(OUTPUT_DIR, generate_document_filename(output.description.document_type))
    record = {
        'description': output.description.to_dict(),
        'guide_content': output.guide_content.to_dict() if output.guide_content else None,
    }
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(record, f, indent=2, ensure_ascii=False)
    logger.info(f"Saved {output.description.document_type} to {path}")
    return path


def main(argv):
    """Run console flow"""
    settings = load_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    use_ai = '--ai' in argv
    args = [a for a in argv if not a.startswith('--')]

    catalog = QuestionCatalog(settings.catalog_path)
    knowledge_base = KnowledgeBase(settings.knowledge_base_path)

    if not args:
        print("Usage: python main.py <flow_type> [--ai]\n")
        for kind in ('document', 'guide'):
            print(f"{kind.title()}s:")
            for flow_type in catalog.flow_types(kind):
                print(f"  {flow_type:<24} {catalog.title(flow_type)}")
        return 0

    enricher = None
    if use_ai:
        enricher = GuideEnricher(build_text_client(settings), knowledge_base, enabled=settings.ai_enabled)

    manager = FlowManager(
        state_machine=FlowStateMachine(catalog),
        assembler=TemplateAssembler(build_default_registry(), knowledge_base, catalog),
        enricher=enricher,
    )

    print_separator()
    print(f"FLOW: {args[0]}")
    print_separator()
    print("Type 'quit', 'exit', or 'stop' to end early")

    result = manager.handle(StartFlow(flow_type=args[0]))

    while True:
        if isinstance(result, IllegalCommand):
            print(f"\nERROR: {result.reason}")
            return 1

        if result.intro:
            print_intro(result.intro)

        if result.error:
            print(f"\n! {result.error['message']}")

        if result.complete:
            break

        if result.progress_message:
            print(f"\n{result.progress_message}")

        print_prompt(result.prompt)

        try:
            user_input = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nFlow interrupted by user")
            return 0

        if user_input.lower() in EXIT_WORDS:
            print("\nFlow ended early by user")
            return 0

        value = resolve_input(result.prompt, user_input)
        result = manager.handle(SubmitAnswer(value=value, state=result.state))

    output = manager.handle(GenerateOutput(state=result.state, use_ai=use_ai))

    if isinstance(output, (TemplateNotFound, IllegalCommand)):
        print(f"\nERROR: {output.reason}")
        return 1

    print()
    print_description(output)
    print_separator()
    print(f"Saved: {save_output(output)}")
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
