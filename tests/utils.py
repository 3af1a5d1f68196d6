import re

_ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


def clean_cli_output(output: str) -> str:
    """Strip colour codes and all whitespace from typer output.

    Summary lines pad their values with spaces and usage errors wrap with the
    terminal width, so assertions compare the squashed text instead.
    """
    return re.sub(r"\s", "", _ANSI_ESCAPE.sub("", output))
