"""Open Service Broker API boundary for the git-backed store."""

import asyncio
import base64
import binascii
import json
import logging
from functools import wraps
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError as PydanticValidationError

from gitops_broker import __version__
from gitops_broker.config import config
from gitops_broker.exceptions import (
    ConflictError,
    DecodeError,
    GitOpsBrokerError,
    NotFoundError,
    ValidationError,
)
from gitops_broker.models.instance import InstanceRecord
from gitops_broker.models.service_broker import (
    DeprovisionResponse,
    ErrorResponse,
    InstanceResponse,
    LastOperationResponse,
    ProvisionRequest,
    ProvisionResponse,
    UpdateRequest,
    UpdateResponse,
)
from gitops_broker.services.lifecycle import LifecycleCoordinator, get_coordinator

logger = logging.getLogger(__name__)


def async_route(f):
    """Decorator to handle async routes in Flask."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(f(*args, **kwargs))
        finally:
            loop.close()
    return wrapper


def error_response(error: str, description: str, status_code: int, **extra):
    body = ErrorResponse(error=error, description=description, **extra)
    return jsonify(body.model_dump(exclude_none=True)), status_code


def parse_originating_identity(header: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode ``X-Broker-API-Originating-Identity: <platform> <base64 json>``."""
    if not header:
        return None

    try:
        platform, encoded = header.split(' ', 1)
        value = json.loads(base64.b64decode(encoded, validate=True))
    except (ValueError, binascii.Error) as e:
        raise ValidationError(
            "Malformed X-Broker-API-Originating-Identity header", field='originating_identity'
        ) from e

    return {'platform': platform, 'value': value}


def create_app(coordinator: Optional[LifecycleCoordinator] = None) -> Flask:
    """Create Flask application with OSB service instance routes."""
    app = Flask(__name__)
    timeout = config.git.operation_timeout

    def get_lifecycle() -> LifecycleCoordinator:
        return coordinator or get_coordinator()

    def require_async():
        if request.args.get('accepts_incomplete', '').lower() != 'true':
            return error_response(
                "AsyncRequired",
                "This service plan requires client support for asynchronous service operations.",
                422
            )
        return None

    def parse_body(model):
        data = request.get_json(silent=True)
        if not data:
            raise ValidationError("Request body is required")
        try:
            return model(**data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid request format: {e}") from e

    @app.route('/v2/service_instances/<instance_id>', methods=['PUT'])
    @async_route
    async def provision_service_instance(instance_id: str):
        """Provision a service instance."""
        rejected = require_async()
        if rejected:
            return rejected

        provision_request = parse_body(ProvisionRequest)
        context = dict(provision_request.context or {})
        if provision_request.organization_guid:
            context.setdefault('organization_guid', provision_request.organization_guid)
        if provision_request.space_guid:
            context.setdefault('space_guid', provision_request.space_guid)

        record = InstanceRecord(
            id=instance_id,
            service_definition_id=provision_request.service_id,
            plan_id=provision_request.plan_id,
            parameters=provision_request.parameters or {},
            context=context or None,
            originating_identity=parse_originating_identity(
                request.headers.get('X-Broker-API-Originating-Identity')
            )
        )

        handle = await asyncio.wait_for(get_lifecycle().create_instance(record), timeout)
        return jsonify(ProvisionResponse(operation=handle.operation).model_dump(exclude_none=True)), 202

    @app.route('/v2/service_instances/<instance_id>', methods=['PATCH'])
    @async_route
    async def update_service_instance(instance_id: str):
        """Update a service instance."""
        rejected = require_async()
        if rejected:
            return rejected

        update_request = parse_body(UpdateRequest)
        handle = await asyncio.wait_for(
            get_lifecycle().update_instance(
                instance_id,
                plan_id=update_request.plan_id,
                parameters=update_request.parameters,
                context=update_request.context
            ),
            timeout
        )
        return jsonify(UpdateResponse(operation=handle.operation).model_dump(exclude_none=True)), 202

    @app.route('/v2/service_instances/<instance_id>', methods=['DELETE'])
    @async_route
    async def deprovision_service_instance(instance_id: str):
        """Deprovision a service instance."""
        rejected = require_async()
        if rejected:
            return rejected

        try:
            handle = await asyncio.wait_for(get_lifecycle().delete_instance(instance_id), timeout)
        except NotFoundError:
            return error_response("Gone", "Service instance does not exist", 410)

        return jsonify(DeprovisionResponse(operation=handle.operation).model_dump(exclude_none=True)), 202

    @app.route('/v2/service_instances/<instance_id>', methods=['GET'])
    def get_service_instance(instance_id: str):
        """Fetch a service instance from the local working copy."""
        record = get_lifecycle().get_instance(instance_id)
        if record.deleted:
            raise NotFoundError(instance_id)

        response = InstanceResponse(
            service_id=record.service_definition_id,
            plan_id=record.plan_id,
            parameters=record.parameters
        )
        return jsonify(response.model_dump()), 200

    @app.route('/v2/service_instances/<instance_id>/last_operation', methods=['GET'])
    def get_last_operation(instance_id: str):
        """Get the status of the last operation."""
        status = get_lifecycle().get_last_operation(instance_id)
        response = LastOperationResponse(state=status.status.value, description=status.description)
        return jsonify(response.model_dump()), 200

    # Health check endpoint
    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "gitops-broker",
            "version": __version__,
            "commit": get_lifecycle().repository.head_commit()
        }), 200

    # Error handlers
    @app.errorhandler(ValidationError)
    def bad_request(error: ValidationError):
        return error_response("BadRequest", error.message, 400)

    @app.errorhandler(NotFoundError)
    def instance_not_found(error: NotFoundError):
        return error_response("NotFound", error.message, 404)

    @app.errorhandler(ConflictError)
    def conflict(error: ConflictError):
        return error_response("Conflict", error.message, 409)

    @app.errorhandler(DecodeError)
    def corrupt_record(error: DecodeError):
        logger.error(f"Stored record is unreadable: {error}")
        return error_response("InternalError", error.message, 500)

    @app.errorhandler(GitOpsBrokerError)
    def broker_error(error: GitOpsBrokerError):
        logger.error(f"Broker operation failed: {error}")
        if error.retryable:
            return error_response("ConcurrencyError", error.message, 503, update_repeatable=True)
        return error_response("InternalError", error.message, 500)

    @app.errorhandler(asyncio.TimeoutError)
    def operation_timeout(error):
        logger.warning(f"Repository operation exceeded {timeout}s")
        return error_response(
            "ConcurrencyError",
            "Repository synchronization timed out, retry the request",
            503,
            update_repeatable=True
        )

    @app.errorhandler(404)
    def not_found(error):
        return error_response("NotFound", "Endpoint not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response("MethodNotAllowed", "Method not allowed for this endpoint", 405)

    return app


def run_server():
    """Run the Flask server."""
    app = create_app()
    app.run(
        host=config.api.host,
        port=config.api.port,
        debug=config.api.debug
    )
