# -*- coding: utf-8 -*-
"""
Tests for the database audit sink.
"""

from models.context import RequestContext
from services.audit_service import DatabaseAuditSink


class TestDatabaseAuditSink:
    """Test audit persistence."""

    def test_trail_is_scoped_and_decoded(self, db):
        sink = DatabaseAuditSink(db)
        context = RequestContext("data-manager-1", "Data Manager", correlation_id="corr-1")

        sink.log_action("package_uploaded", "Uploaded field.uhc", "ImportPackage", "pkg-1",
                        None, {"status": "Received"}, context)
        sink.log_action("package_staged", "Staged 6 records", "ImportPackage", "pkg-1",
                        {"status": "Received"}, {"status": "Staging"}, context)
        sink.log_action("package_uploaded", "Other package", "ImportPackage", "pkg-2",
                        None, None, context)

        trail = sink.get_trail("ImportPackage", "pkg-1")

        by_action = {entry["action_type"]: entry for entry in trail}

        assert sorted(by_action) == ["package_staged", "package_uploaded"]
        assert by_action["package_uploaded"]["old_values"] is None
        assert by_action["package_staged"]["new_values"] == {"status": "Staging"}
        assert by_action["package_staged"]["correlation_id"] == "corr-1"
        assert by_action["package_staged"]["user_id"] == "data-manager-1"
