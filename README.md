# netshoot

netshoot checks a list of hosts and finds the ones that can carry a tunnel. It
has two sides, and both can run in one process:

- **client**: for every host in a host file it connects to your own server,
  optionally over TLS with the host as SNI, and sends each payload with the
  host name written into it. It then waits for the expected response and
  measures download speed. Results go to a JSON array file. Progress is saved,
  so an interrupted scan picks up after the hosts it already checked.
- **server**: it listens for payloads, works out which payload arrived and
  which host was embedded in it, replies with the matching response and
  serves the speed test. With TLS enabled it accepts both TLS and plain
  connections on the same port.

The package needs nothing beyond the Python standard library.

## Installation

```
pip install .
```

## Usage

Run a scan with a JSON configuration file (default `config.json`):

```
netshoot run -c config.json
```

Print the installed version:

```
netshoot version
```

Stop a running scan with Ctrl-C. The scan also stops on its own when the host
file is exhausted, or once the total number of TCP failures has reached
`tcp_fail_threshold`.

## Configuration

```json
{
  "client": {
    "nodes": [
      {
        "type": "payload",
        "server_addr": "203.0.113.10:8080",
        "payload_file": "payload.dt",
        "handshake_retry": 3,
        "speedtest_size": 2,
        "dialer_timeout": "300ms",
        "read_timeout": "300ms",
        "write_timeout": "300ms",
        "tls": {"enabled": true, "insecure": true, "auth_timeout": "500ms"}
      }
    ]
  },
  "server": {
    "nodes": [
      {
        "type": "payload",
        "payload_file": "payload.dt",
        "listen_conf": {"listen": "0.0.0.0:8080", "tls": {"enabled": false}}
      }
    ]
  },
  "host": {"host_file": "hosts.txt", "max_concurrent": 10},
  "result": {
    "output_file": "out.json",
    "progress_file": "progress.json",
    "tcp_fail_threshold": 100
  },
  "log": {"level": "info", "paths": ["stderr"], "encode": "console"}
}
```

Notes on the settings:

- Node `type` must be `payload`; nodes with `"disabled": true` are skipped.
  A configuration that leaves neither a client node nor a server node is
  rejected.
- Durations use forms such as `300ms`, `1.5s` or `2m`. A missing or invalid
  duration falls back to 300 ms.
- `handshake_retry` is how many times a TCP connection is attempted; with 0
  every payload counts as a TCP failure.
- `speedtest_size` is in megabytes (0 to 65535).
- Client TLS uses TLS 1.1 to 1.2; `insecure` turns off certificate checking
  and `next_proto` sets ALPN protocols. `local_addr` or `net_iface` choose the
  source address of outgoing connections.
- Server TLS takes `cert`, `key` and `timeout`.
- The host file holds one host per line. `max_concurrent` (at least 1) is the
  batch size; hosts of a batch are tested at the same time. `interval` is an
  optional pause between batches, given as an integer number of nanoseconds.
- `tcp_fail_threshold` is raised to at least 20.
- `log.level` is one of `debug`, `info`, `warn` or `error`; anything else
  means `warn`. `log.encode` must be `console` or `json`. `log.paths` lists
  `stdout`, `stderr` or file paths.

## Output

The output file is a JSON array with one object per host, holding `Host`,
`TotalTcpFail`, `Success`, `Maybe`, `MaxSpeed` (Mbps), `Err` and a
`PayloadInfo` list with the outcome of each payload. An existing output file
is reopened and appended to. The progress file holds `checked_host`,
`total_tcp_fail`, `last_host` and `total_success`, and is rewritten every few
batches and on close.

## Payload files

A payload file holds a set of named payloads, each with the response the
server sends back. Inside a payload, the marker `<--netshoot-->` marks where
the host name goes. Payload files are built and read from Python:

```python
from netshoot.payload import create_payload_file, read_payload_file

with open("payload.dt", "wb") as stream:
    create_payload_file(
        [b"GET / HTTP/1.1\r\nHost: <--netshoot-->\r\n\r\n"],
        [b"HTTP/1.1 200 OK\r\n\r\n"],
        ["http-get"],
        stream,
    )

for payload in read_payload_file("payload.dt"):
    print(payload.name())
```

## Library use

```python
from netshoot.config import Config
from netshoot.app import Netshoot

shoot = Netshoot(Config.load("config.json"))
shoot.start()
shoot.wait()
shoot.close()
```

## What it does not do

- There is no command that generates a payload file; build one with
  `netshoot.payload.create_payload_file` as shown above.
- Only `payload` nodes exist. A node of type `http` is rejected as not yet
  available, on both the client and the server side.