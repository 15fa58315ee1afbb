"""
Source-map accumulation for one compiled unit, and a Source Map v3 encoder.

The emitter marks positions relative to the start of the chunk it is
producing; the accumulator translates them to absolute generated positions
using its cursors, which the driver advances over every chunk it appends.
"""

import base64
import json
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from kindling.kindling_context import debug_prn, munge

_B64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"


@dataclass(frozen=True)
class Segment:
    gen_col: int
    line: int            # 0-based source line
    col: int             # 0-based source column
    name: Optional[str] = None


class SourceMapAccumulator:
    def __init__(self):
        self.lines: Dict[int, List[Segment]] = {}
        self.gen_line = 0
        self.gen_col = 0

    def mark(self, rel_line: int, rel_col: int, loc: Optional[dict], name: Optional[str] = None):
        """Record that the chunk position (rel_line, rel_col) came from `loc`."""
        if not loc or loc.get("line") is None:
            return
        line = self.gen_line + rel_line
        col = self.gen_col + rel_col if rel_line == 0 else rel_col
        seg = Segment(col, loc["line"] - 1, max((loc.get("col") or 1) - 1, 0), name)
        self.lines.setdefault(line, []).append(seg)

    def advance(self, text: str):
        """Move the cursors past `text`."""
        newlines = text.count("\n")
        if newlines:
            self.gen_line += newlines
            self.gen_col = len(text) - text.rfind("\n") - 1
        else:
            self.gen_col += len(text)

    def table(self) -> Dict[int, List[Segment]]:
        return {line: sorted(segs, key=lambda s: s.gen_col) for line, segs in sorted(self.lines.items())}

    def __repr__(self):
        return f"<SourceMapAccumulator line={self.gen_line} col={self.gen_col} lines={len(self.lines)}>"


# ===================================================================
# Encoding
# ===================================================================

def vlq(value: int) -> str:
    v = ((-value) << 1) | 1 if value < 0 else value << 1
    out = []
    while True:
        digit = v & 31
        v >>= 5
        if v:
            digit |= 32
        out.append(_B64[digit])
        if not v:
            return "".join(out)


def encode(sources: Dict[str, Dict[int, List[Segment]]], *, lines: int, file: str,
           sources_content: Optional[List[str]] = None) -> str:
    """Encode per-source generated-line tables as a Source Map v3 JSON string."""
    names: List[str] = []
    name_index: Dict[str, int] = {}
    merged: Dict[int, List[tuple]] = {}
    for src_index, table in enumerate(sources.values()):
        for gen_line, segs in table.items():
            for seg in segs:
                merged.setdefault(gen_line, []).append((src_index, seg))

    prev_src = prev_line = prev_col = prev_name = 0
    groups = []
    last_line = max([lines - 1] + list(merged))
    for gen_line in range(last_line + 1):
        prev_gen_col = 0
        encoded = []
        for src_index, seg in sorted(merged.get(gen_line, []), key=lambda p: p[1].gen_col):
            fields = [seg.gen_col - prev_gen_col, src_index - prev_src,
                      seg.line - prev_line, seg.col - prev_col]
            prev_gen_col, prev_src, prev_line, prev_col = seg.gen_col, src_index, seg.line, seg.col
            if seg.name is not None:
                if seg.name not in name_index:
                    name_index[seg.name] = len(names)
                    names.append(seg.name)
                idx = name_index[seg.name]
                fields.append(idx - prev_name)
                prev_name = idx
            encoded.append("".join(vlq(f) for f in fields))
        groups.append(",".join(encoded))

    payload = {
        "version": 3,
        "file": file,
        "sources": list(sources),
        "lineCount": lines,
        "mappings": ";".join(groups),
        "names": names,
    }
    if sources_content is not None:
        payload["sourcesContent"] = list(sources_content)
    return json.dumps(payload)


def append_source_map(ctx, name: Optional[str], source: str, sm: SourceMapAccumulator) -> str:
    """
    Finish the unit's source map: store the raw table in the compiler state
    and return the trailer to append to the emitted text.
    """
    smn = munge(name) if name else f"cljs-{int(time.time() * 1000)}"
    src = f"{smn}.cljs"
    file = f"{smn}.js"
    table = sm.table()
    data = ctx.toolchain.encoder({src: table}, lines=sm.gen_line + 3, file=file,
                                 sources_content=[source])
    debug_prn(ctx, data)
    ctx.state.record_source_map(str(name) if name else smn, table)
    payload = base64.b64encode(data.encode("utf-8")).decode("ascii")
    return (f"\n//# sourceURL={file}"
            f"\n//# sourceMappingURL=data:application/json;base64,{payload}")
