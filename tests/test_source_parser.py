from textwrap import dedent

from archgraph.source_parser import (
    compute_content_hash,
    extract_call_references,
    extract_class_hierarchy,
    extract_exports,
    extract_imports,
    extract_symbols,
)


def test_content_hash_is_stable_sha256():
    assert compute_content_hash("abc") == compute_content_hash("abc")
    assert compute_content_hash("abc") != compute_content_hash("abd")
    assert len(compute_content_hash("")) == 64


def test_typescript_symbols():
    code = dedent(
        """
        export class Store {
          get() {}
        }
        export interface Props {
          id: string;
        }
        export async function load() {
          return 1;
        }
        export const handler = async (req) => {
          return req;
        };
        export const MAX_ITEMS = 10;
        """
    )
    symbols = {s.name: s.kind for s in extract_symbols(code, "typescript")}
    assert symbols == {
        "Store": "class",
        "Props": "interface",
        "load": "function",
        "handler": "function",
        "MAX_ITEMS": "variable",
    }


def test_python_symbols_use_ast_spans():
    code = dedent(
        """
        LIMIT = 3

        class Repo:
            def get(self):
                return 1

        async def fetch():
            return 2
        """
    )
    symbols = extract_symbols(code, "python")
    assert [(s.name, s.kind) for s in symbols] == [("LIMIT", "variable"), ("Repo", "class"), ("fetch", "function")]
    repo = symbols[1]
    assert repo.line_end > repo.line_start


def test_python_symbols_fall_back_to_regex_on_syntax_error():
    code = "def ok():\n    pass\n\ndef broken(:\n"
    names = [s.name for s in extract_symbols(code, "python")]
    assert "ok" in names


def test_typescript_imports_keep_each_statement():
    code = dedent(
        """
        import './polyfill';
        import React, { useState } from 'react';
        import { api } from '@/services/api';
        export { helper } from './utils';
        const fs = require('fs');
        """
    )
    refs = {r.source: r for r in extract_imports(code, "typescript")}
    assert set(refs) == {"./polyfill", "react", "@/services/api", "./utils", "fs"}
    assert refs["react"].is_external
    assert refs["react"].name == "React, useState"
    assert not refs["@/services/api"].is_external
    assert refs["./utils"].name == "helper"


def test_python_imports_relative_and_local_roots():
    code = dedent(
        """
        import os
        from . import models, views
        from ..core.db import Session
        from app.services import mailer
        """
    )
    refs = extract_imports(code, "python", local_roots={"app"})
    by_source = {r.source: r for r in refs}
    assert by_source["os"].is_external
    assert not by_source["./models"].is_external
    assert "./views" in by_source
    assert by_source["../core/db"].name == "Session"
    assert by_source["@/app/services"].is_external is False


def test_exports():
    ts = "export function a() {}\nconst b = 1;\nexport { b as c };\n"
    assert extract_exports(ts, "typescript") == ["a", "c"]
    py = "__all__ = ['x']\ndef x(): pass\ndef y(): pass\n"
    assert extract_exports(py, "python") == ["x"]


def test_class_hierarchy_typescript_and_python():
    ts = "class Dog extends Animal implements Pet, Named {\n}\ninterface Pet extends Base {\n}\n"
    entries = {e.name: e for e in extract_class_hierarchy(ts, "typescript")}
    assert entries["Dog"].extends == ["Animal"]
    assert entries["Dog"].implements == ["Pet", "Named"]
    assert entries["Pet"].extends == ["Base"]

    py = "class Repo(BaseRepo, ABC):\n    pass\n"
    (entry,) = extract_class_hierarchy(py, "python")
    assert entry.extends == ["BaseRepo"]


def test_call_references_skip_declaration_line():
    code = dedent(
        """\
        def outer():
            helper()
            outer()
            print("x")

        def helper():
            return 1
        """
    )
    symbols = extract_symbols(code, "python")
    refs = extract_call_references(code, symbols, ["outer", "helper"])
    assert [(r.caller, r.callee) for r in refs] == [("outer", "helper")]
