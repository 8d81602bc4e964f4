import pytest

from estate_rpc.handlers import PropertyHandlers


@pytest.fixture
def props(db):
    return PropertyHandlers(db)


def _listing(property_id, **extra):
    return {"user_id": 1, "property_id": property_id, "address": f"{property_id} Main St", **extra}


def test_save_and_list_newest_first(props):
    assert props.save_property(_listing("p1", price=250000, bedrooms=3))["message"] == "Property saved successfully"
    props.save_property(_listing("p2"))
    result = props.get_saved_properties({"user_id": 1})
    assert result["status"] == "success"
    assert [p["property_id"] for p in result["properties"]] == ["p2", "p1"]
    assert result["properties"][1]["price"] == 250000
    assert props.get_saved_properties({"user_id": 2})["properties"] == []


def test_duplicate_save_refused(props):
    props.save_property(_listing("p1"))
    assert props.save_property(_listing("p1")) == {"status": "error", "message": "Property already saved"}


def test_missing_fields(props):
    assert props.save_property({"user_id": 1})["message"] == "Missing required fields"
    assert props.delete_saved_property({"user_id": 1})["message"] == "Missing required fields"
    assert props.get_saved_properties({})["message"] == "Missing user ID"


def test_delete(props):
    props.save_property(_listing("p1"))
    assert props.delete_saved_property({"user_id": 1, "property_id": "p1"})["status"] == "success"
    assert props.delete_saved_property({"user_id": 1, "property_id": "p1"}) == {
        "status": "error", "message": "Property not found in saved list"}
