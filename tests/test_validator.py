import pytest

from rpcmiddleware.core import Code, Context, EndOfStream, RpcError, ServerStream
from rpcmiddleware.validator import (
    stream_server_interceptor,
    unary_client_interceptor,
    unary_server_interceptor,
    validate,
    with_fail_fast,
    with_on_validation_err_callback,
)

SLEEP_ERROR = "cannot sleep for more than 10s"


class Ping:
    """Message offering validate(all)."""

    def __init__(self, value="something", sleep_time_ms=0):
        self.value = value
        self.sleep_time_ms = sleep_time_ms

    def validate(self, all_errors):
        if self.sleep_time_ms > 10000:
            raise ValueError(SLEEP_ERROR)


class PingError:
    """Message offering validate_all() and validate(all)."""

    def __init__(self, sleep_time_ms=0):
        self.sleep_time_ms = sleep_time_ms

    def validate_all(self):
        if self.sleep_time_ms > 10000:
            raise ValueError(SLEEP_ERROR)

    def validate(self, all_errors):
        if self.sleep_time_ms > 10000:
            raise ValueError(SLEEP_ERROR)


class PingResponse:
    """Message offering only the legacy validate()."""

    def __init__(self, counter=0):
        self.counter = counter

    def validate(self):
        if self.counter > 100:
            raise ValueError("counter is too large")


GOOD_PING = Ping("something", 9999)
BAD_PING = Ping("something", 10001)
GOOD_PING_ERROR = PingError(9999)
BAD_PING_ERROR = PingError(10001)
GOOD_PING_RESPONSE = PingResponse(100)
BAD_PING_RESPONSE = PingResponse(101)


class Recorder:
    def __init__(self):
        self.calls = []

    def validate_all(self):
        self.calls.append("validate_all")

    def validate(self, all_errors):
        self.calls.append(("validate", all_errors))


class LegacyRecorder:
    def __init__(self):
        self.calls = []

    def validate(self):
        self.calls.append("validate")


class FakeServerStream(ServerStream):
    def __init__(self, incoming, ctx=None):
        self._ctx = ctx or Context.background()
        self._incoming = list(incoming)
        self.sent = []

    def context(self):
        return self._ctx

    def send_msg(self, message):
        self.sent.append(message)

    def recv_msg(self):
        if not self._incoming:
            raise EndOfStream()
        return self._incoming.pop(0)


def echo_handler(server, stream):
    while True:
        try:
            message = stream.recv_msg()
        except EndOfStream:
            return None
        stream.send_msg(message)


def unary_handler(ctx, request):
    return "pong"


@pytest.mark.parametrize(
    "message, fail_fast, valid",
    [
        (GOOD_PING, False, True),
        (BAD_PING, False, False),
        (GOOD_PING, True, True),
        (BAD_PING, True, False),
        (GOOD_PING_ERROR, False, True),
        (BAD_PING_ERROR, False, False),
        (GOOD_PING_ERROR, True, True),
        (BAD_PING_ERROR, True, False),
        (GOOD_PING_RESPONSE, False, True),
        (GOOD_PING_RESPONSE, True, True),
        (BAD_PING_RESPONSE, False, False),
        (BAD_PING_RESPONSE, True, False),
    ],
)
def test_validate_wrapper(message, fail_fast, valid):
    ctx = Context.background()
    if valid:
        assert validate(ctx, message, fail_fast, None) is None
    else:
        with pytest.raises(RpcError) as excinfo:
            validate(ctx, message, fail_fast, None)
        assert excinfo.value.code == Code.INVALID_ARGUMENT


def test_validate_error_description_comes_from_message():
    with pytest.raises(RpcError) as excinfo:
        validate(Context.background(), BAD_PING, False, None)
    assert excinfo.value.message == SLEEP_ERROR


def test_validate_prefers_validate_all_when_not_failing_fast():
    rec = Recorder()
    validate(Context.background(), rec, False, None)
    assert rec.calls == ["validate_all"]


def test_validate_fail_fast_uses_validate_false():
    rec = Recorder()
    validate(Context.background(), rec, True, None)
    assert rec.calls == [("validate", False)]


@pytest.mark.parametrize("fail_fast", [False, True])
def test_validate_legacy_called_without_argument(fail_fast):
    rec = LegacyRecorder()
    validate(Context.background(), rec, fail_fast, None)
    assert rec.calls == ["validate"]


def test_validate_without_validation_method_passes():
    assert validate(Context.background(), "plain string", False, None) is None


def test_callback_receives_context_and_error():
    seen = []
    ctx = Context.background().with_value("k", "v")
    with pytest.raises(RpcError):
        validate(ctx, BAD_PING, False, lambda c, err: seen.append((c.value("k"), str(err))))
    assert seen == [("v", SLEEP_ERROR)]


SERVER_OPTION_SETS = [
    (),
    (with_fail_fast(),),
]


@pytest.mark.parametrize("options", SERVER_OPTION_SETS)
def test_server_valid_passes_unary(options):
    interceptor = unary_server_interceptor(*options)
    assert interceptor(Context.background(), GOOD_PING, "/svc/Ping", unary_handler) == "pong"


@pytest.mark.parametrize("options", SERVER_OPTION_SETS)
def test_server_invalid_errors_unary(options):
    handled = []
    interceptor = unary_server_interceptor(*options)
    with pytest.raises(RpcError) as excinfo:
        interceptor(Context.background(), BAD_PING, "/svc/Ping", lambda c, r: handled.append(r))
    assert excinfo.value.code == Code.INVALID_ARGUMENT
    assert handled == []


@pytest.mark.parametrize("options", SERVER_OPTION_SETS)
def test_server_valid_passes_server_stream(options):
    interceptor = stream_server_interceptor(*options)
    stream = FakeServerStream([GOOD_PING])
    assert interceptor(None, stream, "/svc/PingList", echo_handler) is None
    assert stream.sent == [GOOD_PING]


@pytest.mark.parametrize("options", SERVER_OPTION_SETS)
def test_server_invalid_errors_server_stream(options):
    interceptor = stream_server_interceptor(*options)
    stream = FakeServerStream([BAD_PING])
    with pytest.raises(RpcError) as excinfo:
        interceptor(None, stream, "/svc/PingList", echo_handler)
    assert excinfo.value.code == Code.INVALID_ARGUMENT
    assert stream.sent == []


@pytest.mark.parametrize("options", SERVER_OPTION_SETS)
def test_server_invalid_errors_bidi_stream(options):
    interceptor = stream_server_interceptor(*options)
    stream = FakeServerStream([GOOD_PING, GOOD_PING, BAD_PING])
    with pytest.raises(RpcError) as excinfo:
        interceptor(None, stream, "/svc/PingStream", echo_handler)
    assert excinfo.value.code == Code.INVALID_ARGUMENT
    assert stream.sent == [GOOD_PING, GOOD_PING]


def _run_server_suite(options):
    unary = unary_server_interceptor(*options)
    stream_interceptor = stream_server_interceptor(*options)
    with pytest.raises(RpcError):
        unary(Context.background(), BAD_PING, "/svc/Ping", unary_handler)
    with pytest.raises(RpcError):
        stream_interceptor(None, FakeServerStream([BAD_PING]), "/svc/PingList", echo_handler)
    with pytest.raises(RpcError):
        stream_interceptor(
            None, FakeServerStream([GOOD_PING, GOOD_PING, BAD_PING]), "/svc/PingStream", echo_handler
        )


def test_server_on_error_callback_collects_messages():
    got = []
    _run_server_suite((with_on_validation_err_callback(lambda ctx, err: got.append(str(err))),))
    assert got == [SLEEP_ERROR, SLEEP_ERROR, SLEEP_ERROR]


def test_server_fail_fast_with_callback_collects_messages():
    got = []
    _run_server_suite(
        (with_fail_fast(), with_on_validation_err_callback(lambda ctx, err: got.append(str(err))))
    )
    assert got == [SLEEP_ERROR, SLEEP_ERROR, SLEEP_ERROR]


def test_stream_end_is_not_validated():
    interceptor = stream_server_interceptor()

    def handler(server, stream):
        try:
            stream.recv_msg()
        except EndOfStream:
            return "eof"
        return "message"

    assert interceptor(None, FakeServerStream([]), "/svc/PingStream", handler) == "eof"


def test_stream_wrapper_keeps_context():
    ctx = Context.background().with_value("k", "v")
    seen = []
    interceptor = stream_server_interceptor()
    interceptor(None, FakeServerStream([], ctx), "/svc/PingStream", lambda s, st: seen.append(st.context().value("k")))
    assert seen == ["v"]


def _invoker(ctx, method, request, *call_options):
    return "pong"


@pytest.mark.parametrize("options", [(), (with_fail_fast(),)])
def test_client_valid_passes_unary(options):
    interceptor = unary_client_interceptor(*options)
    assert interceptor(Context.background(), "/svc/Ping", GOOD_PING, _invoker) == "pong"


@pytest.mark.parametrize("options", [(), (with_fail_fast(),)])
def test_client_invalid_errors_unary(options):
    sent = []
    interceptor = unary_client_interceptor(*options)
    with pytest.raises(RpcError) as excinfo:
        interceptor(Context.background(), "/svc/Ping", BAD_PING, lambda *a: sent.append(a))
    assert excinfo.value.code == Code.INVALID_ARGUMENT
    assert sent == []


def test_client_fail_fast_with_callback():
    got = []
    interceptor = unary_client_interceptor(
        with_fail_fast(), with_on_validation_err_callback(lambda ctx, err: got.append(str(err)))
    )
    assert interceptor(Context.background(), "/svc/Ping", GOOD_PING, _invoker) == "pong"
    with pytest.raises(RpcError):
        interceptor(Context.background(), "/svc/Ping", BAD_PING, _invoker)
    assert got == [SLEEP_ERROR]