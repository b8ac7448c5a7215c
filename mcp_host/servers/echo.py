"""
Reference stdio server used by the host test suite.

Tools: "echo" returns its message; "exit" kills the process without
replying, which looks like a crash to the host. Switches make the
process misbehave during startup:

    --pid-file F   append our pid to F (counts spawned processes)
    --noise        print one non-JSON line before serving
    --fail-init    exit with status 2 before reading any request

Try it:
    echo '{"jsonrpc":"2.0","method":"ping","id":1}' | python -m mcp_host.servers.echo
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from mcp_host.server import StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message. Useful for testing."
    parameters = {
        "message": {
            "type": "string",
            "description": "The message to echo back",
        },
    }

    def handle(self, params: dict) -> dict:
        message = params.get("message", "")
        return {"echoed": message, "length": len(message)}


class ExitTool(ToolHandler):
    name = "exit"
    description = "Terminates the server process immediately."
    parameters = {
        "code": {"type": "integer", "description": "Exit status"},
    }

    def handle(self, params: dict) -> dict:
        sys.stdout.flush()
        os._exit(int(params.get("code", 3)))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Echo MCP tool server")
    parser.add_argument("--pid-file", help="Append this process's pid to a file")
    parser.add_argument("--noise", action="store_true", help="Print a non-JSON line first")
    parser.add_argument("--fail-init", action="store_true", help="Exit before answering initialize")
    args, _ = parser.parse_known_args(argv)

    if args.pid_file:
        with open(args.pid_file, "a", encoding="utf-8") as f:
            f.write(f"{os.getpid()}\n")
    if args.fail_init:
        sys.stderr.write("echo server: refusing to initialize\n")
        sys.exit(2)
    if args.noise:
        sys.stdout.write("echo server starting (not json)\n")
        sys.stdout.flush()

    server = StdioToolServer("echo")
    server.register(EchoTool())
    server.register(ExitTool())
    server.add_resource("memo://greeting", "héllo wörld ✓")
    server.add_prompt("summarize", "Summarize the given text")
    server.run()


if __name__ == "__main__":
    main()
