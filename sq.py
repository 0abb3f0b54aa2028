import asyncio
import os
import sys
from pathlib import Path

from squared.sq_config import RunnerConfig, CONFIG_ENV
from squared.sq_runtime import ScriptRunner
from squared.sq_printer import Printer

BLOCK_KEYWORDS = ("function", "func", "if", "elif", "else", "while", "for")

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def load_config() -> RunnerConfig:
    """Reads the YAML file named by SQUARED_CONFIG, if any, plus SQUARED_DEBUG."""
    try:
        return RunnerConfig.from_env()
    except (OSError, ValueError) as e:
        print(f"Error: bad configuration in {os.environ.get(CONFIG_ENV)}: {e}", file=sys.stderr)
        raise SystemExit(2)

def opens_block(line: str) -> bool:
    """True when a REPL line starts a multi-line construct (block header or object body)."""
    stripped = line.strip()
    if stripped.endswith("["):
        return True
    first = stripped.split("[", 1)[0].split("(", 1)[0].split()
    return bool(first) and first[0] in BLOCK_KEYWORDS

def print_stdout(result):
    for effect in result.side_effects:
        if effect.get('topics') == ['stdout']:
            print(effect.get('message', ''))

async def run_script_file(file_path: str):
    """Run a Squared script file non-interactively and exit with appropriate status."""
    config = load_config()
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    config.source_dir = str(p.parent.resolve())
    # Output is echoed after the run from the recorded side effects.
    runner = ScriptRunner(config, input_provider=ainput)
    result = await runner.handle_script(source)
    print_stdout(result)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    if result.status == 'cancelled':
        raise SystemExit(130)

async def main():
    """Run a script file when provided, otherwise start the interactive REPL."""
    if len(sys.argv) > 1:
        arg = sys.argv[1]
        if not arg.startswith("-"):
            await run_script_file(arg)
            return

    print("Squared REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    config = load_config()
    config.source_dir = str(Path.cwd())
    runner = ScriptRunner(config, input_provider=ainput)
    printer = Printer()

    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.rstrip("\r\n")

            if not line.strip():
                continue
            if line.strip() == "exit":
                break

            # Block headers keep reading until a blank line.
            lines = [line]
            if opens_block(line):
                while True:
                    more = await ainput(".. ")
                    if more == "" or not more.strip():
                        break
                    lines.append(more.rstrip("\r\n"))

            result = await runner.handle_script("\n".join(lines))

            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)
                continue

            print_stdout(result)

            if result.value is not None:
                print(printer.pformat(result.value))

        except EOFError:
            print("\nExiting.")
            break

def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")

if __name__ == "__main__":
    cli()
