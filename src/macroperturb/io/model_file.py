from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re

from ..exceptions import ParseError
from ..model import Model
from ..parser import parse_model


@dataclass(frozen=True)
class ModelFileSpec:
    path: Path
    name: str
    equations: tuple[str, ...]
    parameters: tuple[str, ...]
    initial_guess: dict[str, float] = field(default_factory=dict)

    def to_model(self) -> Model:
        return parse_model(self.equations, self.parameters, name=self.name)


_COMMENT_PATTERNS = [
    re.compile(r"#.*$", flags=re.MULTILINE),
    re.compile(r"%.*$", flags=re.MULTILINE),
    re.compile(r"//.*$", flags=re.MULTILINE),
]
_NAME_LINE = re.compile(r"(?mi)^\s*name\s*[:=]?\s*(?P<name>[A-Za-z_][\w.-]*)\s*;?\s*$")
_BLOCK = re.compile(
    r"(?mis)^\s*(?P<kind>model|parameters|guess)\s*;?\s*$(?P<body>.*?)^\s*end\s*;?\s*$"
)
_ASSIGN = re.compile(r"^\s*([A-Za-z_]\w*)\s*=\s*([^;]+?)\s*;?\s*$")


def parse_model_file(path: str | Path) -> ModelFileSpec:
    """Read a model file.

    The file holds a ``model`` ... ``end`` block of equations (one per
    line or ``;``-separated), a ``parameters`` ... ``end`` block with
    values, calibration equations and bounds, and optionally a ``guess``
    ... ``end`` block of steady-state starting values and a ``name``
    line.  ``#``, ``%`` and ``//`` start comments.
    """
    model_path = Path(path)
    text = model_path.read_text(encoding="utf-8")
    clean = _strip_comments(text)

    blocks: dict[str, list[str]] = {}
    for match in _BLOCK.finditer(clean):
        kind = match.group("kind").lower()
        if kind in blocks:
            raise ParseError(f"duplicate '{kind}' block in {model_path}")
        blocks[kind] = [
            line.strip() for line in match.group("body").splitlines() if line.strip()
        ]

    remainder = _BLOCK.sub("", clean)
    name_match = _NAME_LINE.search(remainder)
    remainder = _NAME_LINE.sub("", remainder)
    if remainder.strip():
        stray = remainder.strip().splitlines()[0]
        raise ParseError(f"unexpected content outside blocks in {model_path}", text=stray)
    if not blocks.get("model"):
        raise ParseError(f"no 'model' block in {model_path}")

    initial_guess: dict[str, float] = {}
    for line in blocks.get("guess", []):
        for statement in filter(None, (s.strip() for s in line.split(";"))):
            assign = _ASSIGN.match(statement)
            if assign is None:
                raise ParseError("malformed initial guess", text=statement)
            try:
                initial_guess[assign.group(1)] = float(assign.group(2))
            except ValueError:
                raise ParseError("initial guess must be a number", text=statement) from None

    return ModelFileSpec(
        path=model_path,
        name=name_match.group("name") if name_match else model_path.stem,
        equations=tuple(blocks["model"]),
        parameters=tuple(blocks.get("parameters", [])),
        initial_guess=initial_guess,
    )


def load_model(path: str | Path) -> Model:
    return parse_model_file(path).to_model()


def _strip_comments(text: str) -> str:
    out = text
    for pattern in _COMMENT_PATTERNS:
        out = pattern.sub("", out)
    return out
