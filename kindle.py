import argparse
import asyncio
import sys
from pathlib import Path

from kindling.kindling_capabilities import FileResolver
from kindling.kindling_context import Options
from kindling.kindling_driver import Compiler
from kindling.kindling_http import HttpResolver


def _chain(resolvers):
    """A resolver that asks each resolver in turn until one answers."""
    async def resolve(request):
        for resolver in resolvers:
            resource = await resolver(request)
            if resource is not None:
                return resource
        return None
    return resolve


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="kindle", description="Compile or analyze a source file to JavaScript.")
    p.add_argument("file", help="source file to compile")
    p.add_argument("--analyze", action="store_true", help="analyze only, print nothing on success")
    p.add_argument("--source-path", action="append", default=[], metavar="DIR",
                   help="directory searched for required namespaces (repeatable)")
    p.add_argument("--source-url", action="append", default=[], metavar="URL",
                   help="base URL searched for required namespaces (repeatable)")
    p.add_argument("--config", metavar="FILE", help="YAML file with compiler options")
    p.add_argument("--source-map", action="store_true", help="append an inline source map")
    p.add_argument("--verbose", action="store_true", help="print driver diagnostics to stderr")
    return p


async def run_file(args) -> int:
    path = Path(args.file)
    try:
        source = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        return 1

    # no evaluator here, so macro namespaces are only loaded when a config asks
    base = Options(load_macros=False)
    options = Options.from_yaml(args.config, base) if args.config else base
    overrides = {}
    if args.source_map:
        overrides["source-map"] = True
    if args.verbose:
        overrides["verbose"] = True

    roots = args.source_path or [str(path.parent.resolve())]
    resolvers = [FileResolver(roots)] + [HttpResolver(url) for url in args.source_url]
    compiler = Compiler(resolver=_chain(resolvers), options=options)

    mode = "analyze" if args.analyze else "compile"
    result = await compiler.handle_source(source, path.stem, mode, overrides)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    if result.value is not None:
        print(result.value)
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    raise SystemExit(asyncio.run(run_file(args)))


if __name__ == "__main__":
    main()
