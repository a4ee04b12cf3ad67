"""
Flask Web Application for the Relo2France member tools

JSON API over FlowManager (documents and guides), the guide enricher
(health insurance verification) and support tickets.

The member identity comes from the X-User-Id header; authentication is
handled upstream. X-User-Role: staff marks staff requests.
"""

from flask import Flask, request, jsonify
import logging
import os

from backend.commands import FlowState, GenerateOutput, ResumeFlow, StartFlow, SubmitAnswer
from backend.config import PROVIDER_ANTHROPIC, Settings, load_settings
from backend.contracts import Attachment
from backend.core.flow_manager import FlowManager
from backend.core.flow_state_machine import FlowStateMachine
from backend.core.guide_enricher import (
    EnrichmentParseIncomplete,
    EnrichmentUnavailable,
    GuideEnricher,
)
from backend.core.question_catalog import QuestionCatalog
from backend.core.template_assembler import TemplateAssembler, build_default_registry
from backend.messages import SupportTickets, TicketClosed, TicketNotFound
from backend.persistence import MemberStore
from backend.results import IllegalCommand, OutputReady, TemplateNotFound, TurnResult
from backend.utils.knowledge_base import KnowledgeBase
from backend.utils.llm_client import ERROR_ATTACHMENT, ERROR_NOT_CONFIGURED, AnthropicClient

logger = logging.getLogger(__name__)

STAFF_ROLE = "staff"


def build_text_client(settings: Settings):
    """Text-generation client for the configured provider, None when AI is off."""
    if not settings.enrichment_configured:
        return None

    if settings.llm_provider == PROVIDER_ANTHROPIC:
        return AnthropicClient(
            api_key=settings.anthropic_api_key,
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_s,
        )

    # Local model pulls in torch; import only when selected
    from backend.utils.hf_client import HuggingFaceClient

    logger.info("Initializing HuggingFace model (this takes ~30 seconds)...")
    return HuggingFaceClient(
        model_name=settings.local_model,
        device=settings.local_device,
        load_in_4bit=settings.local_device == "cuda",
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_s,
    )


def build_services(settings: Settings) -> dict:
    """Wire the default collaborators from settings (loaded once at startup)."""
    catalog = QuestionCatalog(settings.catalog_path)
    knowledge_base = KnowledgeBase(settings.knowledge_base_path)
    store = MemberStore(settings.data_dir)

    enricher = GuideEnricher(
        text_client=build_text_client(settings),
        knowledge_base=knowledge_base,
        enabled=settings.ai_enabled,
        guide_timeout=settings.llm_timeout_s,
        verify_timeout=settings.verify_timeout_s,
    )

    manager = FlowManager(
        state_machine=FlowStateMachine(catalog),
        assembler=TemplateAssembler(build_default_registry(), knowledge_base, catalog),
        store=store,
        enricher=enricher,
    )

    return {
        "catalog": catalog,
        "flow_manager": manager,
        "store": store,
        "enricher": enricher,
        "tickets": SupportTickets(os.path.join(settings.data_dir, "messages")),
    }


def create_app(settings: Settings = None, services: dict = None) -> Flask:
    """
    Application factory.

    Args:
        settings: Configuration (read from the environment when None)
        services: Pre-built collaborators keyed like build_services();
            tests inject fakes here

    Returns:
        Flask: Configured app
    """
    settings = settings or load_settings()
    services = services or build_services(settings)

    app = Flask(__name__)
    app.config['SECRET_KEY'] = settings.secret_key

    catalog = services["catalog"]
    manager = services["flow_manager"]
    store = services["store"]
    enricher = services["enricher"]
    tickets = services["tickets"]

    # =========================================================================
    # Helpers
    # =========================================================================

    def fail(message, error_type, status=200):
        return jsonify({'success': False, 'error': message, 'error_type': error_type}), status

    def current_user():
        return (request.headers.get('X-User-Id') or '').strip() or None

    def first_name_of(user_id):
        profile = store.load_profile(user_id)
        return profile.get('legal_first_name') or profile.get('display_name')

    def is_staff():
        return request.headers.get('X-User-Role', '').lower() == STAFF_ROLE

    def json_body():
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else None

    def state_from(data):
        raw = data.get('state')
        if not isinstance(raw, dict):
            return None
        return FlowState.from_json(raw)

    def result_response(result):
        if isinstance(result, TurnResult):
            body = {
                'success': result.error is None,
                'complete': result.complete,
                'is_last_question': result.is_last_question,
                'question': result.prompt,
                'state': result.state.to_json(),
                'turn_metadata': result.turn_metadata,
            }
            if result.error:
                body['error'] = result.error['message']
                body['error_type'] = result.error['error_type']
                body['question_id'] = result.error['question_id']
            if result.intro:
                body['intro'] = result.intro
            if result.progress_message:
                body['progress_message'] = result.progress_message
            return jsonify(body)

        if isinstance(result, OutputReady):
            return jsonify({
                'success': True,
                'document_id': result.document_id,
                'description': result.description.to_dict(),
                'preview': result.preview,
                'enriched': result.enriched,
                'guide_content': result.guide_content.to_dict() if result.guide_content else None,
                'warnings': list(result.warnings),
            })

        if isinstance(result, TemplateNotFound):
            return fail(result.reason, 'TemplateNotFound')

        if isinstance(result, IllegalCommand):
            return fail(result.reason, result.error_type, 400)

        raise TypeError(f"Unexpected result type: {type(result).__name__}")

    def enrichment_failure(e: EnrichmentUnavailable):
        if e.reason == ERROR_ATTACHMENT:
            status = 400
        elif e.reason == ERROR_NOT_CONFIGURED:
            status = 503
        else:
            status = 502
        body = {'success': False, 'error': str(e), 'error_type': e.reason, 'retryable': e.retryable}
        return jsonify(body), status

    # =========================================================================
    # Flows
    # =========================================================================

    @app.route('/api/flows', methods=['GET'])
    def list_flows():
        """Available document and guide flows"""
        flows = [
            {'flow_type': t, 'kind': catalog.kind(t), 'title': catalog.title(t)}
            for t in catalog.flow_types()
        ]
        return jsonify({'success': True, 'flows': flows})

    @app.route('/api/flows/<flow_type>/start', methods=['POST'])
    def start_flow(flow_type):
        """Start a flow and return the first question"""
        return result_response(manager.handle(StartFlow(flow_type=flow_type, user_id=current_user())))

    @app.route('/api/flows/<flow_type>/resume', methods=['GET'])
    def resume_flow(flow_type):
        """Continue a flow from the member's saved answers"""
        user_id = current_user()
        if user_id is None:
            return fail("Missing X-User-Id header", 'BadRequest', 400)
        return result_response(manager.handle(ResumeFlow(flow_type=flow_type, user_id=user_id)))

    @app.route('/api/flows/answer', methods=['POST'])
    def submit_answer():
        """Submit one answer and get the next question"""
        data = json_body()
        if data is None or 'value' not in data:
            return fail("Request body must be JSON with 'state' and 'value'", 'BadRequest', 400)

        state = state_from(data)
        if state is None:
            return fail("Missing flow state", 'BadRequest', 400)

        return result_response(manager.handle(
            SubmitAnswer(value=data['value'], state=state, user_id=current_user())
        ))

    @app.route('/api/flows/generate', methods=['POST'])
    def generate_output():
        """Assemble the document or guide for a completed flow"""
        data = json_body()
        if data is None:
            return fail("Request body must be JSON with 'state'", 'BadRequest', 400)

        state = state_from(data)
        if state is None:
            return fail("Missing flow state", 'BadRequest', 400)

        return result_response(manager.handle(GenerateOutput(
            state=state,
            user_id=current_user(),
            use_ai=bool(data.get('use_ai', False)),
        )))

    # =========================================================================
    # Documents
    # =========================================================================

    @app.route('/api/documents', methods=['GET'])
    def list_documents():
        user_id = current_user()
        if user_id is None:
            return fail("Missing X-User-Id header", 'BadRequest', 400)
        try:
            documents = store.list_documents(user_id)
        except ValueError as e:
            return fail(str(e), 'BadRequest', 400)
        return jsonify({'success': True, 'documents': documents})

    @app.route('/api/documents/<document_id>', methods=['GET'])
    def get_document(document_id):
        user_id = current_user()
        if user_id is None:
            return fail("Missing X-User-Id header", 'BadRequest', 400)

        try:
            record = store.load_document(user_id, document_id)
        except ValueError as e:
            return fail(str(e), 'BadRequest', 400)

        if record is None:
            return fail("Document not found", 'NotFound', 404)
        return jsonify({'success': True, 'document': record})

    # =========================================================================
    # Health insurance verification
    # =========================================================================

    @app.route('/api/health/verify', methods=['POST'])
    def verify_health_document():
        """Check an uploaded insurance certificate against visa requirements"""
        upload = request.files.get('file')
        if upload is None:
            return fail("No file was uploaded.", 'BadRequest', 400)

        attachment = Attachment(
            data=upload.read(),
            media_type=upload.mimetype or 'application/octet-stream',
            filename=upload.filename,
        )
        user_context = {
            key: request.form[key]
            for key in ('visa_type', 'planned_duration')
            if request.form.get(key)
        }

        try:
            content = enricher.verify_health_document(attachment, user_context)
        except EnrichmentUnavailable as e:
            logger.warning(f"Verification unavailable: {e.reason}")
            return enrichment_failure(e)
        except EnrichmentParseIncomplete as e:
            logger.warning("Verification response could not be parsed")
            return jsonify({
                'success': True,
                'result': e.content.structured,
                'is_structured': False,
                'warning': str(e),
            })

        return jsonify({'success': True, 'result': content.structured, 'is_structured': True})

    @app.route('/api/health/followup', methods=['POST'])
    def health_followup():
        """Answer a follow-up question about a verification result"""
        data = json_body()
        if data is None:
            return fail("Request body must be JSON with 'question'", 'BadRequest', 400)

        try:
            answer = enricher.ask_followup(data.get('question'), data.get('previous_result'))
        except ValueError as e:
            return fail(str(e), 'BadRequest', 400)
        except EnrichmentUnavailable as e:
            return enrichment_failure(e)

        return jsonify({'success': True, 'answer': answer})

    # =========================================================================
    # Support tickets
    # =========================================================================

    @app.route('/api/messages', methods=['GET'])
    def list_messages():
        status = request.args.get('status', 'all')
        if is_staff():
            return jsonify({'success': True, 'tickets': tickets.list_tickets(status=status)})

        user_id = current_user()
        if user_id is None:
            return fail("Missing X-User-Id header", 'BadRequest', 400)

        # First visit to the inbox stands in for signup
        welcome_id = tickets.send_welcome(user_id, first_name_of(user_id))
        if welcome_id:
            logger.info(f"Welcome ticket {welcome_id} sent")
        return jsonify({'success': True, 'tickets': tickets.list_tickets(user_id, status)})

    @app.route('/api/messages', methods=['POST'])
    def create_message():
        data = json_body()
        user_id = current_user()
        if data is None or user_id is None:
            return fail("Request needs X-User-Id and a JSON body", 'BadRequest', 400)

        try:
            if is_staff():
                ticket_id = tickets.create_staff_ticket(
                    data.get('user_id'), data.get('subject'), data.get('content'), staff_id=user_id
                )
            else:
                ticket_id = tickets.create_ticket(user_id, data.get('subject'), data.get('content'))
        except ValueError as e:
            return fail(str(e), 'ValidationError')

        return jsonify({'success': True, 'ticket_id': ticket_id}), 201

    @app.route('/api/messages/unread', methods=['GET'])
    def unread_messages():
        if is_staff():
            return jsonify({'success': True, 'count': tickets.unread_count(staff=True)})

        user_id = current_user()
        if user_id is None:
            return fail("Missing X-User-Id header", 'BadRequest', 400)
        return jsonify({'success': True, 'count': tickets.unread_count(user_id)})

    @app.route('/api/messages/<ticket_id>', methods=['GET'])
    def get_message(ticket_id):
        staff = is_staff()
        user_id = current_user()
        if not staff and user_id is None:
            return fail("Missing X-User-Id header", 'BadRequest', 400)

        try:
            tickets.mark_read(ticket_id, by_staff=staff, user_id=user_id)
            ticket = tickets.get_ticket(ticket_id, None if staff else user_id)
        except TicketNotFound as e:
            return fail(str(e), 'NotFound', 404)

        return jsonify({'success': True, 'ticket': ticket})

    @app.route('/api/messages/<ticket_id>/reply', methods=['POST'])
    def reply_message(ticket_id):
        data = json_body()
        user_id = current_user()
        if data is None or user_id is None:
            return fail("Request needs X-User-Id and a JSON body", 'BadRequest', 400)

        try:
            reply_id = tickets.add_reply(ticket_id, user_id, data.get('content'), is_staff=is_staff())
        except ValueError as e:
            return fail(str(e), 'ValidationError')
        except TicketClosed as e:
            return fail(str(e), 'TicketClosed')
        except TicketNotFound as e:
            return fail(str(e), 'NotFound', 404)

        return jsonify({'success': True, 'reply_id': reply_id})

    @app.route('/api/messages/<ticket_id>/status', methods=['POST'])
    def set_message_status(ticket_id):
        if not is_staff():
            return fail("Only staff can change ticket status", 'Forbidden', 403)

        data = json_body() or {}
        try:
            tickets.set_status(ticket_id, data.get('status'))
        except ValueError as e:
            return fail(str(e), 'BadRequest', 400)
        except TicketNotFound as e:
            return fail(str(e), 'NotFound', 404)

        return jsonify({'success': True})

    @app.route('/api/messages/<ticket_id>', methods=['DELETE'])
    def delete_message(ticket_id):
        staff = is_staff()
        user_id = current_user()
        if not staff and user_id is None:
            return fail("Missing X-User-Id header", 'BadRequest', 400)

        try:
            tickets.delete_ticket(ticket_id, None if staff else user_id)
        except TicketNotFound as e:
            return fail(str(e), 'NotFound', 404)

        return jsonify({'success': True})

    logger.info("Flask app created")
    return app


if __name__ == '__main__':
    settings = load_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = create_app(settings)

    print("\n" + "="*60)
    print("RELO2FRANCE MEMBER TOOLS - WEB API")
    print("="*60)
    print(f"\nAI enrichment: {'on' if settings.enrichment_configured else 'off'}")
    print("Server starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=True, host='0.0.0.0', port=5000)
