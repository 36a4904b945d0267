"""
Tests for operation dispatch and envelope shaping, including the
end-to-end client scenarios.
"""

import pytest

from datastore_link.core.errors import UnknownOperation
from datastore_link.services.dispatcher import Operation, OpKind


class TestOperation:
    def test_every_kind_covered_for_every_entity(self):
        pairs = {(op.kind, op.entity.table) for op in Operation}
        assert pairs == {(k, t) for k in OpKind for t in ("posts", "comments")}

    def test_lookup_by_wire_name(self):
        assert Operation.from_name("syncComments") is Operation.SYNC_COMMENTS
        assert Operation.from_name("deletePost").kind is OpKind.DELETE

    def test_unknown_name(self):
        with pytest.raises(UnknownOperation):
            Operation.from_name("dropEverything")


class TestDispatcher:
    def test_unknown_operation_raises(self, dispatcher):
        with pytest.raises(UnknownOperation):
            dispatcher.dispatch("syncUsers", {})

    def test_handler_fault_becomes_internal_failure(self, dispatcher, caplog):
        with caplog.at_level("ERROR"):
            out = dispatcher.dispatch("syncPosts", {"cursor": "%%%"})

        assert out["data"] is None
        assert out["error_kind"] == "InternalFailure"
        assert "malformed cursor" in out["error_message"]
        assert "operation_failed op=syncPosts" in caplog.text

    def test_validation_fault_becomes_internal_failure(self, dispatcher):
        out = dispatcher.dispatch("syncPosts", {"limit": 0})
        assert out["error_kind"] == "InternalFailure"

    def test_unknown_field_becomes_internal_failure(self, dispatcher):
        out = dispatcher.dispatch("createPost", {"input": {"title": "x", "color": "red"}})
        assert out["error_kind"] == "InternalFailure"
        assert "color" in out["error_message"]

    def test_legacy_argument_names(self, dispatcher):
        dispatcher.dispatch("createPost", {"input": {"title": "x"}})
        out = dispatcher.dispatch("syncPosts", {"lastSync": None, "nextToken": None, "limit": 5})
        assert len(out["data"]["items"]) == 1

    def test_scenario_create_child_without_id(self, dispatcher):
        dispatcher.dispatch("createPost", {"input": {"external_id": "P", "title": "parent"}})
        out = dispatcher.dispatch("createComment", {"input": {"content": "hi", "post_id": "P"}})

        assert set(out) == {"data"}
        assert out["data"]["post"] == {"id": "P", "deleted": False}
        assert out["data"]["external_id"]
        assert out["data"]["external_id"] != "P"

    def test_scenario_stale_update_conflicts(self, dispatcher, db):
        post = dispatcher.dispatch("createPost", {"input": {"title": "v1"}})["data"]
        dispatcher.dispatch("updatePost", {"input": {"external_id": post["external_id"], "version": 1, "title": "v2"}})

        with db.connection() as s:
            before = s.fetch_one("SELECT COUNT(*) AS n FROM posts_changelog")["n"]

        out = dispatcher.dispatch(
            "updatePost", {"input": {"external_id": post["external_id"], "version": 0, "title": "stale"}}
        )

        assert out["error_kind"] == "Conflict"
        assert out["data"]["version"] == 2
        with db.connection() as s:
            assert s.fetch_one("SELECT COUNT(*) AS n FROM posts_changelog")["n"] == before

    def test_scenario_delete_then_full_sync(self, dispatcher):
        post = dispatcher.dispatch("createPost", {"input": {"title": "doomed"}})["data"]
        dispatcher.dispatch("deletePost", {"input": {"external_id": post["external_id"], "version": post["version"]}})

        items = dispatcher.dispatch("syncPosts", {})["data"]["items"]
        matching = [i for i in items if i["external_id"] == post["external_id"]]
        assert len(matching) == 1
        assert matching[0]["deleted"] is True
        assert matching[0]["version"] == post["version"] + 1

    def test_update_missing_is_not_an_error(self, dispatcher):
        out = dispatcher.dispatch("updateComment", {"input": {"external_id": "ghost", "version": 1}})
        assert out == {"data": None}
