"""Flask app exposing GET /models and POST /debate over the DebateService."""

import logging
import uuid

from flask import Flask, jsonify, request

from arena.providers.base import NoCompatibleModelsError
from arena.service import DebateService

logger = logging.getLogger(__name__)


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def create_app(service: DebateService) -> Flask:
    """Build the Flask app around an already-configured service."""
    app = Flask(__name__)
    app.json.ensure_ascii = False

    @app.get("/models")
    async def list_models():
        try:
            models = await service.list_models()
        except NoCompatibleModelsError:
            return jsonify(error="No compatible models available"), 404
        except Exception as exc:
            logger.error("Error in /models: %s", exc)
            return jsonify(error="Failed to fetch models", details=str(exc)), 500
        return jsonify(models=[{"id": m.id, "name": m.name} for m in models])

    @app.post("/debate")
    async def debate():
        request_id = uuid.uuid4().hex[:9]
        body = request.get_json(silent=True) or {}
        model = body.get("model")
        system_prompt = body.get("systemPrompt")
        history = body.get("history")

        if (
            not model
            or not system_prompt
            or not isinstance(history, list)
            or not all(isinstance(m, dict) for m in history)
        ):
            return jsonify(error="Missing required fields: model, systemPrompt, and history"), 400

        logger.info("[%s] Debate request: model=%s, %d message(s)", request_id, model, len(history))
        logger.debug("[%s] System prompt: %s", request_id, _preview(system_prompt, 100))
        for index, message in enumerate(history):
            parts = message.get("parts") or [{}]
            logger.debug(
                "[%s] %d: role=%s, text=%s",
                request_id, index, message.get("role"), _preview(str(parts[0].get("text", "")), 80),
            )

        try:
            generation = await service.generate(model, system_prompt, history)
        except Exception as exc:
            logger.error("[%s] Error in /debate: %s", request_id, exc)
            return jsonify(error="Failed to get response from AI", details=str(exc)), 500

        logger.info("[%s] Success after %d attempt(s)", request_id, generation.retries + 1)
        return jsonify(text=generation.text, retries=generation.retries)

    return app
