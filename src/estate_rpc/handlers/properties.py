"""
Saved-property handlers.
"""

import logging
from typing import Any

from estate_rpc.models.actions import PropertyAction, Topic
from estate_rpc.models.envelope import error_envelope, success_envelope
from estate_rpc.registry import ActionTable
from estate_rpc.storage import PROPERTY_FIELDS, Database

logger = logging.getLogger(__name__)


class PropertyHandlers:
    def __init__(self, db: Database):
        self._db = db

    def table(self) -> ActionTable:
        return ActionTable(Topic.PROPERTY, {
            PropertyAction.SAVE: self.save_property,
            PropertyAction.LIST: self.get_saved_properties,
            PropertyAction.DELETE: self.delete_saved_property,
        })

    def save_property(self, payload: dict[str, Any]) -> dict[str, Any]:
        if any(payload.get(f) in (None, "") for f in ("user_id", "property_id", "address")):
            return error_envelope("Missing required fields")
        user_id = int(payload["user_id"])
        property_id = str(payload["property_id"])
        details = {f: payload.get(f) for f in PROPERTY_FIELDS}
        if not self._db.save_property(user_id, property_id, payload["address"], **details):
            return error_envelope("Property already saved")
        logger.info("Property %s saved for user %s", property_id, user_id)
        return success_envelope("Property saved successfully", property_id=property_id)

    def get_saved_properties(self, payload: dict[str, Any]) -> dict[str, Any]:
        if payload.get("user_id") is None:
            return error_envelope("Missing user ID")
        properties = self._db.list_saved_properties(int(payload["user_id"]))
        return success_envelope(properties=properties)

    def delete_saved_property(self, payload: dict[str, Any]) -> dict[str, Any]:
        if payload.get("user_id") is None or not payload.get("property_id"):
            return error_envelope("Missing required fields")
        if not self._db.delete_saved_property(int(payload["user_id"]), str(payload["property_id"])):
            return error_envelope("Property not found in saved list")
        return success_envelope("Property removed from saved list")
