import pytest

from cis_m365_audit.controls.base import BaseControl, GraphSettingsControl, Expect
from cis_m365_audit.models import (
    ERROR,
    EVALUATING,
    FAIL,
    PASS,
    ControlResult,
)
from cis_m365_audit.session import EXCHANGE, GRAPH


class Recorder(BaseControl):
    control_id = "9.9.9"
    title = "Records the state it is evaluated in"
    services = (GRAPH,)

    def __init__(self, verdict=PASS):
        super().__init__()
        self.seen_state = None
        self._verdict = verdict

    async def evaluate(self, session, result: ControlResult):
        self.seen_state = result.state
        if self._verdict:
            result.finish(self._verdict, "done")


class Exploding(BaseControl):
    control_id = "9.9.8"
    title = "Raises while evaluating"

    async def evaluate(self, session, result):
        raise KeyError("value")


class NeedsExchange(Recorder):
    services = (EXCHANGE,)


async def test_evaluates_in_evaluating_state_and_ends_terminal(make_session):
    control = Recorder()
    result = await control.run(make_session())
    assert control.seen_state == EVALUATING
    assert result.status == PASS
    assert result.state == PASS
    assert result.duration_seconds >= 0


async def test_exception_during_evaluation_is_error(make_session):
    result = await Exploding().run(make_session())
    assert result.status == ERROR
    assert result.details == ["KeyError: 'value'"]


async def test_connection_failure_is_error_without_evaluating(make_session):
    control = NeedsExchange()
    session = make_session(failures={EXCHANGE: ConnectionError("tenant unreachable")})
    result = await control.run(session)
    assert control.seen_state is None
    assert result.status == ERROR
    assert result.details == ["ConnectionError: tenant unreachable"]


async def test_missing_verdict_is_error(make_session):
    result = await Recorder(verdict=None).run(make_session())
    assert result.status == ERROR


def test_finish_rejects_unknown_status():
    result = ControlResult(control_id="1", title="t")
    with pytest.raises(ValueError):
        result.finish("WARN")
    assert result.status is None



async def test_graph_settings_control_reports_each_mismatch(make_session):
    class Settings(GraphSettingsControl):
        control_id = "9.9.7"
        endpoint = "admin/example"
        expectations = (
            Expect("a", equals=True),
            Expect("b.c", maximum=10),
        )

    result = await Settings().run(make_session({"admin/example": {"a": False, "b": {"c": 11}}}))
    assert result.status == FAIL
    assert result.details == ["a: expected True, found False", "b.c: expected at most 10, found 11"]


def test_to_row_joins_details():
    result = ControlResult(control_id="1.1.1", title="Admins", level=1).finish(FAIL, "one", "two")
    assert result.to_row() == {
        "control_id": "1.1.1",
        "title": "Admins",
        "level": 1,
        "status": FAIL,
        "details": "one | two",
    }
