"""Tests for the sequential dependency-ordered walks."""

from __future__ import annotations

import pytest

from monobuild.core.result import DependencyCycleError, SequentialVisitError
from monobuild.scheduler import Visit, visit_dependents, visit_in_order, visit_in_reverse_order
from monobuild.workspace import Unit


class Recorder:
    """Visitor that records names and optionally stops at one of them."""

    def __init__(self, stop_at: str | None = None) -> None:
        self.visited: list[str] = []
        self.stop_at = stop_at

    async def __call__(self, unit: Unit) -> Visit | None:
        self.visited.append(unit.name)
        if unit.name == self.stop_at:
            return Visit.STOP
        return None


class TestVisitInOrder:
    """Test the sequential dependency-ordered walk."""

    @pytest.mark.asyncio
    async def test_dependencies_first(self, make_unit) -> None:
        """Dependencies are visited before dependents."""
        units = [make_unit("c", ["b"]), make_unit("b", ["a"]), make_unit("a")]
        recorder = Recorder()

        result = await visit_in_order(units, recorder)

        assert result is Visit.CONTINUE
        assert recorder.visited == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_diamond_visits_each_unit_once(self, make_unit) -> None:
        """Shared dependencies are visited once."""
        units = [
            make_unit("app", ["left", "right"]),
            make_unit("left", ["base"]),
            make_unit("right", ["base"]),
            make_unit("base"),
        ]
        recorder = Recorder()

        await visit_in_order(units, recorder)

        assert recorder.visited == ["base", "left", "right", "app"]

    @pytest.mark.asyncio
    async def test_peer_and_dev_dependencies_order_too(self, make_unit) -> None:
        """Peer and dev dependencies also order the walk."""
        units = [make_unit("app", peer=["ui"], dev=["tools"]), make_unit("ui"), make_unit("tools")]
        recorder = Recorder()

        await visit_in_order(units, recorder)

        assert recorder.visited == ["ui", "tools", "app"]

    @pytest.mark.asyncio
    async def test_external_dependencies_ignored(self, make_unit) -> None:
        """Packages outside the workspace are ignored."""
        recorder = Recorder()

        await visit_in_order([make_unit("app", ["lodash"])], recorder)

        assert recorder.visited == ["app"]

    @pytest.mark.asyncio
    async def test_stop_ends_the_walk(self, make_unit) -> None:
        """Returning STOP ends the walk."""
        units = [make_unit("a"), make_unit("b", ["a"]), make_unit("c", ["b"])]
        recorder = Recorder(stop_at="b")

        result = await visit_in_order(units, recorder)

        assert result is Visit.STOP
        assert recorder.visited == ["a", "b"]

    @pytest.mark.asyncio
    async def test_stop_inside_dependency_recursion(self, make_unit) -> None:
        """STOP from a dependency ends the whole walk."""
        units = [make_unit("c", ["b"]), make_unit("b", ["a"]), make_unit("a"), make_unit("d")]
        recorder = Recorder(stop_at="a")

        assert await visit_in_order(units, recorder) is Visit.STOP
        assert recorder.visited == ["a"]

    @pytest.mark.asyncio
    async def test_cycle_raises(self, make_unit) -> None:
        """A cycle raises DependencyCycleError."""
        units = [make_unit("a", ["b"]), make_unit("b", ["a"])]
        recorder = Recorder()

        with pytest.raises(DependencyCycleError) as exc_info:
            await visit_in_order(units, recorder)

        assert exc_info.value.cycle == ["a", "b", "a"]
        assert recorder.visited == []

    @pytest.mark.asyncio
    async def test_visitor_error_is_wrapped(self, make_unit) -> None:
        """Visitor exceptions become SequentialVisitError."""
        async def explode(unit: Unit) -> None:
            raise RuntimeError("boom")

        with pytest.raises(SequentialVisitError) as exc_info:
            await visit_in_order([make_unit("a")], explode)

        assert exc_info.value.context == {"unit": "a"}
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_error_ends_the_walk(self, make_unit) -> None:
        """Nothing is visited after a visitor error."""
        visited: list[str] = []

        async def fail_on_a(unit: Unit) -> None:
            visited.append(unit.name)
            if unit.name == "a":
                raise ValueError("nope")

        with pytest.raises(SequentialVisitError):
            await visit_in_order([make_unit("a"), make_unit("b")], fail_on_a)

        assert visited == ["a"]

    @pytest.mark.asyncio
    async def test_loads_workspace_when_units_missing(self, make_workspace, monkeypatch) -> None:
        """Units default to the workspace at cwd."""
        root = make_workspace(
            {
                "app": {"name": "app", "dependencies": {"lib": "*"}},
                "lib": {"name": "lib"},
            }
        )
        monkeypatch.chdir(root)
        recorder = Recorder()

        await visit_in_order(None, recorder)

        assert recorder.visited == ["lib", "app"]


class TestVisitInReverseOrder:
    """Test the reverse walk."""

    @pytest.mark.asyncio
    async def test_dependents_first(self, make_unit) -> None:
        """Dependents are visited before dependencies."""
        units = [make_unit("c", ["b"]), make_unit("b", ["a"]), make_unit("a")]
        recorder = Recorder()

        result = await visit_in_reverse_order(units, recorder)

        assert result is Visit.CONTINUE
        assert recorder.visited == ["c", "b", "a"]

    @pytest.mark.asyncio
    async def test_stop(self, make_unit) -> None:
        """Returning STOP ends the reverse walk."""
        units = [make_unit("c", ["b"]), make_unit("b", ["a"]), make_unit("a")]
        recorder = Recorder(stop_at="b")

        assert await visit_in_reverse_order(units, recorder) is Visit.STOP
        assert recorder.visited == ["c", "b"]


class TestVisitDependents:
    """Test visit_dependents."""

    @pytest.mark.asyncio
    async def test_direct_dependents_only(self, make_unit) -> None:
        """Only direct dependents are visited."""
        base = make_unit("base", ["base"])
        units = [
            base,
            make_unit("mid", ["base"]),
            make_unit("top", ["mid"]),
            make_unit("other", ["base"]),
            make_unit("dev-only", dev=["base"]),
        ]
        recorder = Recorder()

        result = await visit_dependents(base, recorder, units)

        assert result is Visit.CONTINUE
        assert recorder.visited == ["mid", "other"]

    @pytest.mark.asyncio
    async def test_stop(self, make_unit) -> None:
        """Returning STOP ends the scan."""
        base = make_unit("base")
        units = [base, make_unit("x", ["base"]), make_unit("y", ["base"])]
        recorder = Recorder(stop_at="x")

        assert await visit_dependents(base, recorder, units) is Visit.STOP
        assert recorder.visited == ["x"]
