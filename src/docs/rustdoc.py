# src/docs/rustdoc.py — v1
"""Normalize rustdoc JSON output into a DocArtifact.

Only items of the local crate (crate_id 0) that carry a name are kept.
Item paths come from the rustdoc ``paths`` table when available, otherwise
from the parent chain (module -> struct -> field ...). Signatures are
rendered best-effort for functions, types and constants.
"""

from __future__ import annotations

import logging
from typing import Any

from cratevault.docs.models import DocArtifact, DocItem, SourceSpan
from cratevault.errors import InvalidSource

logger = logging.getLogger(__name__)

_KIND_ALIASES = {"struct_field": "field", "typedef": "type_alias", "opaque_ty": "type_alias"}


def normalize_rustdoc(
    raw: dict[str, Any],
    crate_name: str,
    max_items: int | None = None,
) -> DocArtifact:
    """Convert raw rustdoc JSON into a DocArtifact.

    Args:
        raw: Parsed rustdoc JSON document.
        crate_name: Name used when the root item carries none.
        max_items: Reject documentation with more items than this.

    Raises:
        InvalidSource: If the document is not rustdoc JSON or is too large.
    """
    index = raw.get("index")
    if not isinstance(index, dict):
        raise InvalidSource(f"Documentation for {crate_name} is not rustdoc JSON (no index)")

    root_id = _id(raw.get("root"))
    paths_table = {_id(k): v for k, v in (raw.get("paths") or {}).items()}
    parents = _parent_map(index)

    items: dict[str, DocItem] = {}
    for raw_id, entry in index.items():
        item_id = _id(raw_id)
        if entry.get("crate_id", 0) != 0 or not entry.get("name"):
            continue
        kind = item_kind(entry.get("inner"))
        path = _item_path(item_id, index, paths_table, parents)
        items[item_id] = DocItem(
            id=item_id,
            name=entry["name"],
            kind=kind,
            path=path,
            signature=render_signature(entry, kind),
            docs=entry.get("docs") or None,
            span=_span(entry.get("span")),
            module="::".join(path[:-1]) or None,
            visibility=_visibility(entry.get("visibility")),
        )
        if max_items is not None and len(items) > max_items:
            raise InvalidSource(
                f"Documentation for {crate_name} exceeds {max_items} items",
                detail={"max_items": max_items},
            )

    root_name = crate_name
    if root_id and root_id in index and index[root_id].get("name"):
        root_name = index[root_id]["name"]

    logger.debug("Normalized %d items for %s", len(items), root_name)
    return DocArtifact(
        crate_name=root_name,
        crate_version=raw.get("crate_version"),
        format_version=raw.get("format_version"),
        root_id=root_id,
        items=items,
    )


def item_kind(inner: Any) -> str:
    """Kind name from the single key of the ``inner`` object."""
    if isinstance(inner, str):
        key = inner
    elif isinstance(inner, dict) and inner:
        key = next(iter(inner))
    else:
        return "unknown"
    return _KIND_ALIASES.get(key, key)


# === Paths ===


def _id(value: Any) -> str:
    return "" if value is None else str(value)


def _children(inner: Any) -> list[str]:
    """Ids contained by a module, type, trait or impl."""
    if not isinstance(inner, dict) or not inner:
        return []
    kind, body = next(iter(inner.items()))
    if not isinstance(body, dict):
        return []
    children: list[Any] = []
    if kind in ("module", "trait", "impl"):
        children.extend(body.get("items") or [])
    elif kind == "enum":
        children.extend(body.get("variants") or [])
    elif kind in ("struct", "union"):
        children.extend(body.get("fields") or [])
        struct_kind = body.get("kind")
        if isinstance(struct_kind, dict):
            plain = struct_kind.get("plain") or {}
            children.extend(plain.get("fields") or [])
            children.extend(f for f in struct_kind.get("tuple") or [] if f is not None)
        children.extend(body.get("impls") or [])
    elif kind == "variant":
        variant_kind = body.get("kind")
        if isinstance(variant_kind, dict):
            struct = variant_kind.get("struct") or {}
            children.extend(struct.get("fields") or [])
            children.extend(f for f in variant_kind.get("tuple") or [] if f is not None)
    return [_id(c) for c in children]


def _parent_map(index: dict[str, Any]) -> dict[str, str]:
    parents: dict[str, str] = {}
    for raw_id, entry in index.items():
        for child in _children(entry.get("inner")):
            parents.setdefault(child, _id(raw_id))
    return parents


def _item_path(
    item_id: str,
    index: dict[str, Any],
    paths_table: dict[str, Any],
    parents: dict[str, str],
) -> list[str]:
    summary = paths_table.get(item_id)
    if summary and summary.get("path"):
        return list(summary["path"])

    names: list[str] = []
    current: str | None = item_id
    seen: set[str] = set()
    while current is not None and current not in seen:
        seen.add(current)
        summary = paths_table.get(current)
        if summary and summary.get("path") and current != item_id:
            return list(summary["path"]) + names[::-1]
        entry = index.get(current) or {}
        if entry.get("name"):
            names.append(entry["name"])
        current = parents.get(current)
    return names[::-1]


# === Scalars ===


def _span(raw: Any) -> SourceSpan | None:
    if not isinstance(raw, dict) or not raw.get("filename"):
        return None
    begin = raw.get("begin") or [0, 0]
    end = raw.get("end") or begin
    return SourceSpan(
        filename=str(raw["filename"]),
        begin_line=int(begin[0]),
        begin_col=int(begin[1]) if len(begin) > 1 else 0,
        end_line=int(end[0]),
        end_col=int(end[1]) if len(end) > 1 else 0,
    )


def _visibility(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and "restricted" in raw:
        restricted = raw["restricted"] or {}
        return f"restricted({restricted.get('path', restricted.get('parent', ''))})"
    return "default"


# === Signatures ===


def render_signature(entry: dict[str, Any], kind: str) -> str | None:
    name = entry.get("name") or ""
    inner = entry.get("inner")
    body = inner.get(next(iter(inner))) if isinstance(inner, dict) and inner else None
    if not isinstance(body, dict):
        body = {}

    if kind == "function":
        sig = body.get("sig") or body.get("decl") or {}
        generics = _render_generics(body.get("generics"))
        params = ", ".join(
            f"{pname}: {render_type(ptype)}" for pname, ptype in (sig.get("inputs") or [])
        )
        output = sig.get("output")
        ret = f" -> {render_type(output)}" if output else ""
        header = body.get("header") or {}
        prefix = "".join(
            word + " "
            for word, flag in (
                ("const", header.get("is_const") or header.get("const_")),
                ("async", header.get("is_async") or header.get("async_")),
                ("unsafe", header.get("is_unsafe") or header.get("unsafe_")),
            )
            if flag
        )
        return f"{prefix}fn {name}{generics}({params}){ret}"
    if kind in ("struct", "enum", "union", "trait"):
        return f"{kind} {name}{_render_generics(body.get('generics'))}"
    if kind == "type_alias":
        aliased = body.get("type")
        suffix = f" = {render_type(aliased)}" if aliased else ""
        return f"type {name}{_render_generics(body.get('generics'))}{suffix}"
    if kind in ("constant", "assoc_const"):
        ty = body.get("type")
        return f"const {name}: {render_type(ty)}" if ty else f"const {name}"
    if kind == "static":
        mutable = "mut " if body.get("is_mutable") or body.get("mutable") else ""
        return f"static {mutable}{name}: {render_type(body.get('type'))}"
    if kind == "field":
        return f"{name}: {render_type(body)}" if body else name
    if kind == "module":
        return f"mod {name}"
    if kind == "macro":
        return f"macro_rules! {name}"
    return None


def _render_generics(generics: Any) -> str:
    if not isinstance(generics, dict):
        return ""
    names: list[str] = []
    for param in generics.get("params") or []:
        pname = param.get("name")
        if not pname or pname.startswith("impl "):
            continue
        names.append(pname)
    return f"<{', '.join(names)}>" if names else ""


def render_type(ty: Any) -> str:
    """Render a rustdoc Type object as Rust-ish text; "..." when unknown."""
    if ty is None:
        return "()"
    if isinstance(ty, str):
        return ty
    if not isinstance(ty, dict) or not ty:
        return "..."
    kind, value = next(iter(ty.items()))
    if kind in ("primitive", "generic"):
        return str(value)
    if kind == "resolved_path":
        path = value.get("path") or value.get("name") or "..."
        return f"{path}{_render_args(value.get('args'))}"
    if kind == "borrowed_ref":
        lifetime = f"{value['lifetime']} " if value.get("lifetime") else ""
        mutable = "mut " if value.get("is_mutable") or value.get("mutable") else ""
        return f"&{lifetime}{mutable}{render_type(value.get('type'))}"
    if kind == "raw_pointer":
        mutable = "mut" if value.get("is_mutable") or value.get("mutable") else "const"
        return f"*{mutable} {render_type(value.get('type'))}"
    if kind == "tuple":
        return f"({', '.join(render_type(t) for t in value)})"
    if kind == "slice":
        return f"[{render_type(value)}]"
    if kind == "array":
        return f"[{render_type(value.get('type'))}; {value.get('len', '_')}]"
    if kind in ("impl_trait", "dyn_trait"):
        bounds = value if isinstance(value, list) else value.get("traits") or []
        rendered = []
        for bound in bounds:
            trait = bound.get("trait_bound", {}).get("trait") or bound.get("trait") or {}
            rendered.append(trait.get("path") or trait.get("name") or "...")
        keyword = "impl" if kind == "impl_trait" else "dyn"
        return f"{keyword} {' + '.join(rendered) or '...'}"
    if kind == "qualified_path":
        return f"<{render_type(value.get('self_type'))}>::{value.get('name', '...')}"
    return "..."


def _render_args(args: Any) -> str:
    if not isinstance(args, dict):
        return ""
    angle = args.get("angle_bracketed")
    if not isinstance(angle, dict):
        return ""
    rendered: list[str] = []
    for arg in angle.get("args") or []:
        if isinstance(arg, dict) and "type" in arg:
            rendered.append(render_type(arg["type"]))
        elif isinstance(arg, dict) and "lifetime" in arg:
            rendered.append(str(arg["lifetime"]))
    return f"<{', '.join(rendered)}>" if rendered else ""
