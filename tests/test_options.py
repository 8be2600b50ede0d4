import pytest

from rpcmiddleware.core import Code, Context
from rpcmiddleware.retry.backoff import backoff_linear
from rpcmiddleware.retry.options import (
    DEFAULT_RETRIABLE_CODES,
    CallOption,
    RetryPolicy,
    disable,
    split_call_options,
    with_backoff,
    with_codes,
    with_max,
    with_on_retry_callback,
    with_per_retry_timeout,
)


def test_default_policy_is_disabled_with_default_codes():
    policy = RetryPolicy()
    assert policy.max_retries == 0
    assert policy.per_call_timeout == 0
    assert policy.include_header is True
    assert policy.codes == DEFAULT_RETRIABLE_CODES
    assert set(DEFAULT_RETRIABLE_CODES) == {Code.RESOURCE_EXHAUSTED, Code.UNAVAILABLE}


def test_default_backoff_is_jittered_around_fifty_milliseconds():
    policy = RetryPolicy()
    for _ in range(100):
        wait = policy.backoff_func(Context.background(), 1)
        assert abs(wait - 0.05) <= 0.05 * 0.10 + 1e-12


def test_with_no_options_reuses_policy():
    policy = RetryPolicy()
    assert policy.with_options([]) is policy


def test_with_options_copies_and_leaves_original_untouched():
    base = RetryPolicy()
    changed = base.with_options([with_max(5), with_codes(Code.DATA_LOSS)])
    assert changed is not base
    assert changed.max_retries == 5
    assert changed.codes == (Code.DATA_LOSS,)
    assert base.max_retries == 0
    assert base.codes == DEFAULT_RETRIABLE_CODES


def test_later_options_override_earlier():
    policy = RetryPolicy().with_options([with_max(5), disable()])
    assert policy.max_retries == 0


def test_backoff_and_callback_are_installed():
    backoff = backoff_linear(0.05)
    calls = []

    def callback(ctx, attempt, err):
        calls.append(attempt)

    policy = RetryPolicy().with_options([with_backoff(backoff), with_on_retry_callback(callback)])
    assert policy.backoff_func is backoff
    policy.on_retry_callback(Context.background(), 2, RuntimeError("boom"))
    assert calls == [2]


def test_per_retry_timeout_is_set():
    policy = RetryPolicy().with_options([with_per_retry_timeout(1.5)])
    assert policy.per_call_timeout == 1.5


def test_with_codes_accepts_integers():
    policy = RetryPolicy().with_options([with_codes(int(Code.NOT_FOUND), Code.ABORTED)])
    assert policy.codes == (Code.NOT_FOUND, Code.ABORTED)


@pytest.mark.parametrize("factory, arg", [(with_max, -1), (with_per_retry_timeout, -0.5)])
def test_negative_values_rejected(factory, arg):
    with pytest.raises(ValueError):
        factory(arg)


def test_split_call_options_partitions_in_order():
    first = with_max(3)
    second = with_codes(Code.UNAVAILABLE)
    others, retry_options = split_call_options(["a", first, "b", second])
    assert others == ["a", "b"]
    assert retry_options == [first, second]
    assert all(isinstance(option, CallOption) for option in retry_options)


def test_split_call_options_empty():
    assert split_call_options([]) == ([], [])