"""
Unit tests for the saga runner.
"""

import pytest

from pharmapos.services.saga_service import Saga, SagaError


class Boom(Exception):
    pass


def _raise(message):
    def action(ctx):
        raise Boom(message)
    return action


class TestSagaRun:

    def test_results_are_stored_by_step_name(self):
        saga = Saga('test')
        saga.step('one', lambda ctx: 1)
        saga.step('two', lambda ctx: ctx['one'] + 1)
        result = saga.run()
        assert result['two'] == 2
        assert result.steps_executed == 2
        assert result.warnings == []

    def test_failure_compensates_in_reverse(self):
        calls = []
        saga = Saga('test')
        saga.step('a', lambda ctx: 'A', compensate=lambda value, ctx: calls.append(value))
        saga.step('b', lambda ctx: 'B', compensate=lambda value, ctx: calls.append(value))
        saga.step('c', _raise('c failed'), compensate=lambda value, ctx: calls.append('C'))

        with pytest.raises(SagaError) as exc_info:
            saga.run()

        assert calls == ['B', 'A']
        error = exc_info.value
        assert error.step == 'c'
        assert isinstance(error.error, Boom)
        assert error.compensators_run == 2
        assert error.rollback_complete is True

    def test_soft_failure_continues(self):
        failures = []
        saga = Saga('test')
        saga.step('a', lambda ctx: 'A')
        saga.step('soft', _raise('later'), soft=True,
                  on_soft_failure=lambda ctx, e: failures.append(str(e)))
        saga.step('c', lambda ctx: 'C')

        result = saga.run()
        assert result['soft'] is None
        assert result['c'] == 'C'
        assert failures == ['later']
        assert result.warnings == [{'step': 'soft', 'message': 'later'}]

    def test_completed_soft_step_is_compensated(self):
        calls = []
        saga = Saga('test')
        saga.step('soft', lambda ctx: 'S', compensate=lambda value, ctx: calls.append(value), soft=True)
        saga.step('hard', _raise('no'))
        with pytest.raises(SagaError):
            saga.run()
        assert calls == ['S']

    def test_failing_compensator_does_not_stop_the_others(self):
        calls = []
        outcomes = []

        def bad_compensation(value, ctx):
            raise Boom('cannot undo')

        saga = Saga('test', on_compensation=lambda step, ok: outcomes.append((step, ok)))
        saga.step('a', lambda ctx: 'A', compensate=lambda value, ctx: calls.append(value))
        saga.step('b', lambda ctx: 'B', compensate=bad_compensation)
        saga.step('c', _raise('c failed'))

        with pytest.raises(SagaError) as exc_info:
            saga.run()

        assert calls == ['A']
        assert outcomes == [('b', False), ('a', True)]
        assert exc_info.value.rollback_complete is False
        assert exc_info.value.failed_compensations == ['b']
