# rpcmiddleware

Small, composable middleware for RPC clients and servers, written against
plain callables. It uses only the standard library.

An interceptor is a function that wraps one call. It receives the call's
`Context`, the call's details and the next step to run: an *invoker*,
*streamer* or *handler*. It decides how and whether that next step runs.

## Modules

### `rpcmiddleware.core`

The building blocks shared by every interceptor:

- `Code` is an enum of the status codes. `str(Code.DEADLINE_EXCEEDED)` is
  `"DeadlineExceeded"`.
- `RpcError(code, message)` is an error that carries a code. Its text is
  `rpc error: code = <Code> desc = <message>`.
- `ContextCancelled` and `ContextDeadlineExceeded` are the errors a context
  reports once it is done.
- `EndOfStream` is raised by `recv_msg()` when a stream has no more
  messages.
- `code_of(err)` returns the code of any error:
  - `None` gives `OK`.
  - An `RpcError` gives its own code.
  - The two context errors give `DEADLINE_EXCEEDED` and `CANCELED`.
  - Anything else gives `UNKNOWN`.
- `Context` holds values, cancellation and a deadline:
  - `Context.background()` gives an empty context.
  - `with_value(key, value)` and `value(key)` store and look up values.
  - `with_cancel()` and `with_timeout(seconds)` derive a context that can be
    cancelled. `cancel()` on any other context raises `RuntimeError`.
  - `error()`, `remaining()` and `wait(timeout)` report on a context's
    state.
  - Cancelling a context also cancels every context derived from it.
- `StreamDesc(stream_name, client_streams, server_streams)` describes a
  streaming call.
- `ServerStream` and `ClientStream` are the abstract stream interfaces.
- `wrap_server_stream(stream)` returns a `WrappedServerStream`. Its
  `wrapped_context` attribute can be reassigned to replace the stream's
  context. Wrapping a stream that is already wrapped returns it unchanged.

### `rpcmiddleware.metadata`

`MD` is a `dict` that maps lower-case keys to lists of string values.

- `MD.from_pairs("k1", "v1", "k2", "v2", ...)` builds one from pairs. An odd
  number of arguments raises `ValueError`.
- `get(key)` returns the first value, or `""` if there is none.
- `set(key, value)` replaces all values for a key. `add(key, value)` appends
  a value. `delete(key)` removes every value for a key.
- `set`, `add` and `delete` all return the `MD`, so calls can be chained.
- Keys are lower-cased on lookup and on write. Values stored under keys
  that end in `-bin` are base64-encoded.
- `clone(*keys)` makes a deep copy. If keys are given, it keeps only those
  keys, compared without regard to case.
- `to_outgoing(ctx)` and `to_incoming(ctx)` attach the metadata to a child
  context.
- `extract_outgoing(ctx)` and `extract_incoming(ctx)` return a copy of the
  metadata attached to a context. If there is none, they return an empty
  `MD`.

```python
md = extract_incoming(server_ctx).clone("authorization", "x-custom")
client_ctx = md.set("x-client-header", "2").set("x-another", "3").to_outgoing(ctx)
```

### `rpcmiddleware.backoffutils`

- `jitter_up(duration, jitter)` moves `duration` up or down at random by up
  to the fraction `jitter`. For example, 10 s with a jitter of 0.1 gives a
  value in [9, 11].
- `exponent_base2(a)` returns `2**(a-1)` for `a >= 1` and `0` for `a == 0`.
  A negative `a` raises `ValueError`.

### `rpcmiddleware.timeout`

`unary_client_interceptor(timeout)` runs each unary call under a context
that expires after `timeout` seconds. The context is cancelled when the
call returns. A negative timeout raises `ValueError`.

```python
interceptor = unary_client_interceptor(0.1)
reply = interceptor(Context.background(), "/pkg.Service/Ping", request, invoker)
# invoker(ctx, method, request, *call_options) is called with the timed context
```

### `rpcmiddleware.validator`

These interceptors check messages and reject invalid ones with
`RpcError(Code.INVALID_ARGUMENT, <error text>)`. A message marks itself
invalid by raising an exception from one of these methods:

- `validate_all()` reports every error.
- `validate(all)` takes a flag that says whether to report every error.
- `validate()` takes no argument.

`validate(ctx, message, should_fail_fast, callback)` runs the check. The
method it calls depends on the mode:

- **Normal mode** uses the first method the message has, in this order:
  1. `validate_all()`
  2. `validate(True)`
  3. `validate()`
- **Fail-fast mode** calls `validate(False)`, or `validate()` if that method
  takes no argument. If the message has only `validate_all()`, nothing is
  checked.

The interceptors:

- `unary_server_interceptor(*options)` is called as
  `(ctx, request, info, handler)`. It validates the request before it calls
  `handler(ctx, request)`.
- `unary_client_interceptor(*options)` is called as
  `(ctx, method, request, invoker, *call_options)`. It validates the request
  before it calls the invoker.
- `stream_server_interceptor(*options)` is called as
  `(server, stream, info, handler)`. It passes the handler a stream that
  validates every message received through `recv_msg()`.

Options:

- `with_fail_fast()` turns on fail-fast mode.
- `with_on_validation_err_callback(fn)` has `fn(ctx, err)` called on each
  validation failure.

### `rpcmiddleware.retry`

Retries are off by default.

- Set the most attempts with `with_max`, either when you build the
  interceptor or as an extra argument to a single call.
- `disable()` is the same as `with_max(0)`.
- Retry options passed per call are taken out of the call options. The
  other options are handed on to the invoker or streamer unchanged.

`rpcmiddleware.retry.options` holds the policy and its options:

- `RetryPolicy` has these fields and defaults:
  - `max_retries`: 0
  - `per_call_timeout`: 0
  - `include_header`: `True`
  - `codes`: `DEFAULT_RETRIABLE_CODES`, which is `RESOURCE_EXHAUSTED` and
    `UNAVAILABLE`
  - `backoff_func`: 50 ms linear backoff with 10% jitter
  - `on_retry_callback`: logs each failed attempt at debug level to the
    `rpcmiddleware.retry` logger
- `with_codes(*codes)` sets which codes are retried.
- `with_backoff(fn)` sets the function that decides how long to wait.
- `with_on_retry_callback(fn)` sets the callback, which is called as
  `fn(ctx, attempt, err)`.
- `with_per_retry_timeout(seconds)` gives each attempt its own deadline.
  When it is set, deadline errors from a single attempt are retried.
- `split_call_options(options)` separates retry options from all others.

`rpcmiddleware.retry.backoff` holds the backoff functions. Each one takes
`(ctx, attempt)` and returns a wait in seconds:

- `backoff_linear(wait)`
- `backoff_linear_with_jitter(wait, fraction)`
- `backoff_exponential(scalar)`, which waits `scalar * 2**(attempt-1)`
- `backoff_exponential_with_jitter(scalar, fraction)`

`rpcmiddleware.retry.retry` holds the interceptors:

- `unary_client_interceptor(*options)` is called as
  `(ctx, method, request, invoker, *call_options)`.
- `stream_client_interceptor(*options)` is called as
  `(ctx, desc, method, streamer, *call_options)`. The streamer must return
  a `ClientStream`.
  - If retries are enabled and `desc.client_streams` is true, it raises
    `RpcError(Code.UNIMPLEMENTED, ...)`.
  - Otherwise it returns a `RetryingServerStream`. That stream keeps the
    messages sent through it. When `recv_msg()` fails with a retriable
    error, it reopens the stream, sends those messages again, closes the
    sending side and receives again.

The retry rules are the same for every call:

- Cancellation or expiry of the caller's context is never retried. A
  backoff wait that is cut short by the caller's context raises the
  matching `RpcError`.
- Attempts after the first carry an `x-retry-attempt` entry in their
  outgoing metadata, unless `include_header` is false.

```python
from rpcmiddleware.core import Code, Context
from rpcmiddleware.retry.backoff import backoff_linear
from rpcmiddleware.retry.options import with_backoff, with_codes, with_max
from rpcmiddleware.retry.retry import unary_client_interceptor

interceptor = unary_client_interceptor(
    with_max(3),
    with_codes(Code.UNAVAILABLE, Code.DATA_LOSS),
    with_backoff(backoff_linear(0.05)),
)
reply = interceptor(Context.background(), "/pkg.Service/Ping", request, invoker, with_max(5))
```

## What this package does not do

There is no network transport, client connection or server in this package.
It does not open sockets, encode messages or register services. You supply
the invoker, streamer or handler that does the actual call, and you arrange
the chaining of interceptors yourself.

## Tests

The tests live in `tests/` and run under pytest, which the `test` extra
installs.