# dispgate

`dispgate` is a small HTTP dispatch gateway. It accepts HTTP requests and
answers two routes itself, `/api/health` and `/api/version`. It forwards the
`/api/user`, `/api/order` and `/api/product` routes to backend processors. To
reach a processor it opens a plain TCP connection and sends one JSON message.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Running the gateway

```
dispgate
dispgate --config path/to/server.conf
```

By default the gateway reads `config/server.conf` from the working directory.
Use `--config` to name another file. Log lines go to the console and to a
timestamped file under `logs/`, such as `logs/disp_20240101_120000.log`. A
log file that grows past 200 MB is replaced by a new one.

The command exits with status 1 in any of these cases:

- the configuration file cannot be read;
- the request handler cannot be set up;
- the listening socket cannot be opened.

`SIGINT` or `SIGTERM` stops the server cleanly.

### Configuration

The configuration file holds `key = value` lines. A line that begins with `#`
is a comment. A line without `=` is ignored, and so is a line with nothing
after the `=`. Spaces and tabs around keys and values are removed.

```
# listening socket
disp.port = 8080
disp.max_connections = 1000
disp.timeout = 60
disp.use_epoll = true

# backend processors
ap.endpoints.user = http://localhost:8081
ap.endpoints.order = http://localhost:8081
ap.endpoints.product = http://localhost:8081
```

The values above are also the defaults.

`disp.use_epoll` chooses the server model:

- `true` gives the single-threaded, selector-based `EventServer`.
- `false` gives `ThreadedServer`, which serves each connection on its own
  thread.

Boolean values accept `true`/`yes`/`1` and `false`/`no`/`0`, in any case.
Integer values use their leading digits. A value that is not valid falls back
to the default, and an error is logged.

An endpoint host must be an IPv4 address or `localhost`, which is treated as
`127.0.0.1`. If an endpoint has no port, port 8081 is used.

### HTTP behaviour

Routes match the request path exactly, with any query string removed.

| Request                   | Response                                      |
|---------------------------|-----------------------------------------------|
| Registered path           | `200`, with the handler's output as the JSON body |
| Unknown path              | `404`                                         |
| Handler raises            | `500`                                         |
| `OPTIONS` on any path     | a CORS preflight reply                        |

Every response carries `Access-Control-Allow-Origin: *` and
`Connection: close`.

### Request forwarding

The request type of an API request comes from its method and path:

| Request                       | Request type         |
|-------------------------------|----------------------|
| `GET /api/user/7`             | `user.get`           |
| `GET /api/user`               | `user.list`          |
| `POST /api/order`             | `order.create`       |
| `PUT /api/product`            | `product.update`     |
| `PATCH /api/order/7/status`   | `order.updateStatus` |
| `DELETE /api/user`            | `user.delete`        |

The JSON message sent to the processor holds these fields:

- `type`: the request type.
- `request_id`: a tracing identifier, `REQ` followed by the time in
  milliseconds and four random digits.
- every field of a JSON object request body. A body that is not valid JSON is
  ignored and a warning is logged.
- `id`: the number from a path such as `/api/user/7`.

The gateway waits up to 5 seconds for a reply. It reads one block of at most
4095 bytes, and that reply becomes the response body. When the connection,
the send or the receive fails, the body is a JSON object with an `error`
field instead.

## Using it as a library

```python
from dispgate.config import get_config
from dispgate.request_handler import RequestHandler
from dispgate.server_factory import ServerType, create_server

config = get_config()
config.load("config/server.conf")   # raises OSError if unreadable

handler = RequestHandler()
handler.init(config)

server = create_server(ServerType.THREADED, 8080)
server.set_route("/api/health", lambda raw: handler.handle_request("/api/health", raw))
server.start()        # returns at once; connections are served on threads
...
server.stop()
```

`create_server` also accepts the name `"threaded"`, `"thread"` or `"epoll"`, or
a use-epoll flag. An unknown name falls back to `ThreadedServer`.

`EventServer.start()` runs its event loop in the calling thread. It returns
only after `stop()` is called from another thread or from a signal handler.

`dispgate.app.build_server(config, handler)` builds a server the way the
`dispgate` command does. It sets the port, connection limit and timeout, and
registers all five routes.

### Other modules

- `dispgate.logger`: `EnhancedLogger` and `get_logger()`, a levelled logger.
  Each record can carry a `LogContext` (request id, client IP, user, operation).
  The logger also writes dedicated request, response, database, performance and
  system records.
- `dispgate.utils`: helpers for strings, files, local time, IPv4 checks, port
  availability, MD5/SHA-256 hex digests and JSON string escaping.
- `dispgate.db_manager`: `DBManager`, which wraps one MySQL connection through
  PyMySQL. Rows come back as lists of strings, with SQL NULL as `"NULL"`. It
  has transaction and escaping helpers, and it raises `DatabaseError` on
  failure.
- `dispgate.server_base`: the `Server` base class, plus the
  `create_response` and `create_options_response` helpers.

## What it does not do

`dispgate` is only the front gateway. It does not include the backend
processors that handle `user`, `order` and `product` requests. Each endpoint
in the configuration needs a separate service that reads one JSON message and
writes a reply. The gateway never uses `DBManager` itself; that class is there
for such services to use.