"""
Flask Web Application for the Applicant Verification Call Agent

JSON harness around a single active verification call.

Endpoints:
    GET  /            Service info
    POST /api/start   Body: applicant record -> session id + greeting
    POST /api/answer  Body: {"answer": "..."} -> next prompt
    GET  /api/state   Snapshot of the active call
"""

from flask import Flask, request, jsonify
import logging
import uuid

from verification.config import VerificationConfig
from verification.core.entity_extractor import EntityExtractor
from verification.core.verification_agent import VerificationAgent


logger = logging.getLogger(__name__)


def build_extractor(config):
    """Rule-based extractor, or LLM-backed when config.use_llm (slow: loads the model)"""
    if not config.use_llm:
        return EntityExtractor()

    # Deferred so rule-based mode never imports torch
    from verification.utils.hf_client import HuggingFaceClient

    logger.info(f"Initializing HuggingFace model {config.model_name} (this takes ~30 seconds)...")
    hf_client = HuggingFaceClient(
        model_name=config.model_name,
        device=config.device,
        load_in_4bit=config.device == "cuda"
    )
    logger.info("Model loaded successfully")
    return EntityExtractor(hf_client)


def create_app(config=None, extractor=None):
    """
    Build the Flask app

    Args:
        config: VerificationConfig (from environment if None)
        extractor: Shared entity extractor (built from config if None)
    """
    config = config or VerificationConfig.from_env()
    extractor = extractor if extractor is not None else build_extractor(config)

    app = Flask(__name__)

    # Global state for the current call
    current_call = {
        'session_id': None,
        'agent': None,
    }

    def _error(message, status):
        return jsonify({
            'success': False,
            'error': message
        }), status

    @app.route('/')
    def index():
        """Service info"""
        hf_client = getattr(extractor, 'hf_client', None)
        return jsonify({
            'success': True,
            'service': 'applicant-verification-agent',
            'mode': 'llm' if hf_client is not None else 'rule-based',
            'model': hf_client.get_model_info() if hf_client is not None else None,
            'active_session': current_call['session_id'],
        })

    @app.route('/api/start', methods=['POST'])
    def start_call():
        """Start new verification call (replaces any active one)"""
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error('Request body must be a JSON applicant record', 400)

        try:
            agent = VerificationAgent(data, extractor=extractor, config=config)
        except (TypeError, ValueError) as e:
            logger.warning(f"Rejected applicant record: {e}")
            return _error(str(e), 400)
        except Exception as e:
            logger.error(f"Error starting call: {e}")
            return _error(str(e), 500)

        session_id = uuid.uuid4().hex[:8]
        current_call['session_id'] = session_id
        current_call['agent'] = agent
        logger.info(f"New call started: {session_id}")

        return jsonify({
            'success': True,
            'session_id': session_id,
            'prompt': agent.render_prompt(),
            'node': agent.current_node_id,
        })

    @app.route('/api/answer', methods=['POST'])
    def submit_answer():
        """Submit caller answer and get next prompt"""
        agent = current_call['agent']
        if agent is None:
            return _error('No active call', 400)

        data = request.get_json(silent=True)
        answer = data.get('answer') if isinstance(data, dict) else None
        if not isinstance(answer, str) or not answer.strip():
            return _error("'answer' must be a non-empty string", 400)

        try:
            prompt = agent.submit(answer.strip())
        except Exception as e:
            logger.error(f"Error processing answer: {e}")
            return _error(str(e), 500)

        return jsonify({
            'success': True,
            'prompt': prompt,
            'node': agent.current_node_id,
            'finished': agent.is_terminal,
            'identity_verified': agent.identity_verified,
        })

    @app.route('/api/state')
    def call_state():
        """Snapshot of the active call"""
        agent = current_call['agent']
        if agent is None:
            return _error('No active call', 400)

        return jsonify({
            'success': True,
            'session_id': current_call['session_id'],
            'state': agent.snapshot(),
        })

    return app


if __name__ == '__main__':
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = create_app(VerificationConfig.from_env())

    print("\n" + "="*60)
    print("APPLICANT VERIFICATION AGENT - HTTP HARNESS")
    print("="*60)
    print("\nServer starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(host='0.0.0.0', port=5000)
