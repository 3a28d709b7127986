"""CLI entry point for threadurl."""

import argparse
import logging
import subprocess
import sys
from typing import NoReturn

import argcomplete

from .errors import InvalidMode, ThreadUrlError
from .models import Provider


def uri_completer(prefix, parsed_args, **kwargs):
    """Complete provider URI prefixes."""
    return [f"agents://{p.value}/" for p in Provider if f"agents://{p.value}/".startswith(prefix)]


class ArgumentParserExitCode1(argparse.ArgumentParser):
    """ArgumentParser that exits with code 1 instead of 2 for consistency with other failures."""

    def error(self, message: str) -> NoReturn:
        """Print error and exit with code 1."""
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


USAGE = """\
Usage: threadurl <command> <uri> [options]

Commands:
  threadurl read <uri>                     Render a thread (drill-down for <main>/<agent>)
  threadurl list <uri>                     Subagent status for a main thread
  threadurl raw <uri>                      Print the backing file unchanged
  threadurl path <uri>                     Print the backing file path
  threadurl write <uri> -d <prompt>        Create or continue a thread
  threadurl completion <shell>             Generate shell completion script

Options for 'read' and 'list':
  -I, --head            Print only the frontmatter block
  -f, --format=X        markdown (default), json or yaml
  --json                Shorthand for --format=json
  -o, --output=PATH     Write output to a file

Options for 'write':
  -d, --data=X          Prompt text, @file, or @- for stdin (repeatable)

URIs:
  agents://<provider>/<id>              Main thread
  agents://<provider>/<id>/<child>      Subagent (amp, codex, claude, gemini) or pi entry
  <provider>://<id>[/<child>]           Legacy form, same thread

Providers:
  amp, codex, claude, gemini, pi, opencode
  Write supports codex and claude.

Environment:
  CODEX_HOME, CLAUDE_CONFIG_DIR, GEMINI_CLI_HOME,
  PI_CODING_AGENT_DIR, XDG_DATA_HOME
"""


def _add_view_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("uri", help="Thread URI").completer = uri_completer
    p.add_argument("-I", "--head", action="store_true", help="Frontmatter only")
    p.add_argument("-f", "--format", choices=["markdown", "json", "yaml"], default="markdown", dest="format_str", help="Output format")
    p.add_argument("--json", action="store_true", dest="json_output", help="JSON output (shorthand for --format=json)")
    p.add_argument("-o", "--output", dest="output_path", help="Write output to a file")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = ArgumentParserExitCode1(
        prog="threadurl",
        description="Read local coding-agent threads by URI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=USAGE,
    )
    parser.add_argument("--debug", action="store_true", help="Log resolution details to stderr")
    subparsers = parser.add_subparsers(dest="command")

    # read
    p_read = subparsers.add_parser("read", help="Render a thread")
    _add_view_options(p_read)

    # list
    p_list = subparsers.add_parser("list", help="Subagent status for a main thread")
    _add_view_options(p_list)

    # raw
    p_raw = subparsers.add_parser("raw", help="Print the backing file unchanged")
    p_raw.add_argument("uri", help="Thread URI").completer = uri_completer
    p_raw.add_argument("-o", "--output", dest="output_path", help="Write output to a file")

    # path
    p_path = subparsers.add_parser("path", help="Print the backing file path")
    p_path.add_argument("uri", help="Thread URI").completer = uri_completer

    # write
    p_write = subparsers.add_parser("write", help="Create or continue a thread")
    p_write.add_argument("uri", help="agents://<provider> or agents://<provider>/<id>").completer = uri_completer
    p_write.add_argument("-d", "--data", action="append", required=True, help="Prompt text, @file or @-")
    p_write.add_argument("-o", "--output", dest="output_path", help="Write output to a file")
    p_write.add_argument("-I", "--head", action="store_true", help=argparse.SUPPRESS)

    # completion
    p_completion = subparsers.add_parser("completion", help="Generate shell completion script")
    p_completion.add_argument(
        "shell",
        choices=["bash", "zsh", "fish"],
        help="Shell to generate completions for",
    )

    return parser


def _generate_completion(shell: str) -> int:
    """Generate shell completion script using register-python-argcomplete."""
    try:
        result = subprocess.run(
            ["register-python-argcomplete", "--shell", shell, "threadurl"],
            capture_output=True,
            text=True,
            check=True,
        )
        print(result.stdout, end="")
        return 0
    except FileNotFoundError:
        print("Error: register-python-argcomplete not found", file=sys.stderr)
        print("Install with: pip install argcomplete", file=sys.stderr)
        return 1
    except subprocess.CalledProcessError as e:
        print(f"Error: {e.stderr}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)

    if args.command is None:
        print(USAGE)
        return 1

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format="[%(name)s] %(levelname)s: %(message)s", stream=sys.stderr)

    try:
        if args.command == "read":
            from .commands.read import cmd_read
            cmd_read(
                uri=args.uri,
                head=args.head,
                format_str=args.format_str,
                json_output=args.json_output,
                output_path=args.output_path,
            )

        elif args.command == "list":
            from .commands.read import cmd_list
            cmd_list(
                uri=args.uri,
                head=args.head,
                format_str=args.format_str,
                json_output=args.json_output,
                output_path=args.output_path,
            )

        elif args.command == "raw":
            from .commands.read import cmd_raw
            cmd_raw(args.uri, output_path=args.output_path)

        elif args.command == "path":
            from .commands.read import cmd_path
            cmd_path(args.uri)

        elif args.command == "write":
            if args.head:
                raise InvalidMode("--head cannot be combined with write")
            from .commands.write import cmd_write
            cmd_write(args.uri, args.data, output_path=args.output_path)

        elif args.command == "completion":
            return _generate_completion(args.shell)

        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return 1

    except ThreadUrlError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"ERROR: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
