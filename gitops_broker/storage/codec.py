"""YAML codec for the on-disk record types."""

import logging
from typing import Any, Dict, Type, TypeVar

import yaml
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from gitops_broker.exceptions import DecodeError
from gitops_broker.models.instance import InstanceRecord, OperationStatus

logger = logging.getLogger(__name__)

ModelT = TypeVar('ModelT', bound=BaseModel)


class YamlCodec:
    """Encode and decode InstanceRecord and OperationStatus as YAML.

    Field order follows the model declaration so diffs stay readable.
    Optional fields that are absent (None or empty parameters) are not
    written. Decoding ignores unknown keys and never fills in required
    fields.
    """

    def encode_instance(self, record: InstanceRecord) -> bytes:
        data = record.model_dump(mode='json', by_alias=True, exclude_none=True)
        if not data.get('parameters'):
            data.pop('parameters', None)
        return self._dump(data)

    def decode_instance(self, raw: bytes, source: str = "<instance>") -> InstanceRecord:
        return self._decode(raw, InstanceRecord, source)

    def encode_status(self, status: OperationStatus) -> bytes:
        return self._dump(status.model_dump(mode='json'))

    def decode_status(self, raw: bytes, source: str = "<status>") -> OperationStatus:
        return self._decode(raw, OperationStatus, source)

    def _dump(self, data: Dict[str, Any]) -> bytes:
        text = yaml.safe_dump(
            data,
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True
        )
        return text.encode('utf-8')

    def _decode(self, raw: bytes, model: Type[ModelT], source: str) -> ModelT:
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise DecodeError(f"Invalid YAML in {source}", path=source, cause=e) from e

        if not isinstance(data, dict):
            raise DecodeError(
                f"Expected a mapping in {source}, got {type(data).__name__}",
                path=source
            )

        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            logger.debug(f"Schema validation failed for {source}: {e}")
            raise DecodeError(f"Invalid {model.__name__} in {source}", path=source, cause=e) from e


# Shared stateless codec
codec = YamlCodec()
