import pytest

from servicegrid.cache.graph import InvalidationGraph, build_default_graph


@pytest.mark.unit
class TestInvalidationGraph:
    def _graph(self) -> InvalidationGraph:
        graph = InvalidationGraph()
        for name in ("a", "b", "c"):
            graph.register(name, lambda bid, name=name: (name, bid))
        return graph

    def test_affected_includes_self_first(self) -> None:
        graph = self._graph()
        assert graph.affected("a") == ["a"]

    def test_affected_is_transitive(self) -> None:
        graph = self._graph()
        graph.depends_on("b", "a")
        graph.depends_on("c", "b")
        assert graph.affected("a") == ["a", "b", "c"]
        assert graph.affected("c") == ["c"]

    def test_cycles_terminate(self) -> None:
        graph = self._graph()
        graph.depends_on("b", "a")
        graph.depends_on("a", "b")
        assert graph.affected("a") == ["a", "b"]

    def test_unknown_resource_rejected(self) -> None:
        graph = self._graph()
        with pytest.raises(KeyError):
            graph.depends_on("missing", "a")
        with pytest.raises(KeyError):
            graph.affected("missing")

    def test_keys_for_uses_business_id(self) -> None:
        graph = self._graph()
        graph.depends_on("b", "a")
        assert graph.keys_for("a", "biz") == [("a", "biz"), ("b", "biz")]


@pytest.mark.unit
class TestDefaultGraph:
    def test_profile_change_invalidates_session_and_dashboard(self) -> None:
        keys = build_default_graph().keys_for("profile", "b1")
        assert keys == [
            ("profile.current",),
            ("business.current",),
            ("dashboard.summary",),
            ("dashboard-data",),
        ]

    def test_customer_change_reaches_documents_and_dashboard(self) -> None:
        affected = build_default_graph().affected("customers")
        assert affected[0] == "customers"
        for dependent in ("quotes", "jobs", "invoices", "dashboard", "dashboard-legacy"):
            assert dependent in affected
        assert "profile" not in affected

    def test_job_change_is_narrow(self) -> None:
        keys = build_default_graph().keys_for("jobs", "b1")
        assert keys == [("jobs", "b1"), ("dashboard.summary",), ("dashboard-data",)]

    def test_user_businesses_reach_members(self) -> None:
        keys = build_default_graph().keys_for("user-businesses", "b1")
        assert keys == [("user-businesses",), ("business-members", "b1")]
