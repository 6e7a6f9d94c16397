from __future__ import annotations

import asyncio
from pathlib import Path

from jsontag.exceptions import CheckerUnavailable
from jsontag.orchestrator import TYPE_SNIPPET, Orchestrator
from jsontag.remap import CheckerDiagnostic, DocumentDiagnostic
from jsontag.schema import ValidatorSettings
from jsontag.synthesis import SyntheticArtifact

TAG = '"$type": {"$from": "./model.py", "$import": "MyType"}'


class _Sink:
    def __init__(self) -> None:
        self.published: list[tuple[str, list[DocumentDiagnostic]]] = []
        self.errors: list[str] = []

    def publish(self, document_uri: str, diagnostics: list[DocumentDiagnostic]) -> None:
        self.published.append((document_uri, list(diagnostics)))

    def notify_error(self, message: str) -> None:
        self.errors.append(message)


class _Store:
    def __init__(self) -> None:
        self.writes: list[SyntheticArtifact] = []
        self.deletes: list[Path] = []

    async def write(self, artifact: SyntheticArtifact) -> bool:
        self.writes.append(artifact)
        return True

    async def delete(self, path: Path) -> None:
        self.deletes.append(path)


class _Checker:
    def __init__(self, diagnostics=(), error: Exception | None = None) -> None:
        self.diagnostics = list(diagnostics)
        self.error = error
        self.checked: list[SyntheticArtifact] = []

    async def check(self, artifact: SyntheticArtifact) -> list[CheckerDiagnostic]:
        self.checked.append(artifact)
        if self.error is not None:
            raise self.error
        return [
            CheckerDiagnostic(
                file_path=str(artifact.path),
                line=line,
                character=character,
                length=length,
                message=message,
            )
            for line, character, length, message in self.diagnostics
        ]

    def is_indexed(self, path: Path) -> bool:
        return True


class _BlockingChecker(_Checker):
    def __init__(self) -> None:
        super().__init__()
        self.releases: list[asyncio.Event] = []

    async def check(self, artifact: SyntheticArtifact) -> list[CheckerDiagnostic]:
        release = asyncio.Event()
        self.releases.append(release)
        await release.wait()
        label = "first" if '"v": 1' in artifact.content else "second"
        return [
            CheckerDiagnostic(
                file_path=str(artifact.path), line=2, character=0, length=1, message=label
            )
        ]


def _checker_mode(checker: _Checker, store: _Store, sink: _Sink) -> Orchestrator:
    return Orchestrator(
        sink,
        ValidatorSettings(mode="checker"),
        checker=checker,
        store=store,
    )


def _uri(path: Path) -> str:
    return path.as_uri()


def test_matcher_mode_publishes_located_mismatch(sample_document: Path) -> None:
    sink = _Sink()
    orchestrator = Orchestrator(sink)
    text = sample_document.read_text(encoding="utf-8")

    asyncio.run(orchestrator.validate(_uri(sample_document), sample_document, text))

    assert sink.errors == []
    [(uri, diagnostics)] = sink.published
    assert uri == _uri(sample_document)
    [diagnostic] = diagnostics
    assert (diagnostic.start_line, diagnostic.start_char) == (6, 24)
    assert (diagnostic.end_line, diagnostic.end_char) == (6, 30)
    assert diagnostic.message == "Type mismatch at arr.3: expected number, got string"


def test_matcher_mode_locates_missing_property_at_parent_key(
    tmp_path: Path, model_path: Path
) -> None:
    document = tmp_path / "doc.json"
    text = "{\n  " + TAG + ',\n  "nestedObj": {}\n}'
    sink = _Sink()
    asyncio.run(Orchestrator(sink).validate(_uri(document), document, text))
    messages = [d.message for d in sink.published[-1][1]]
    assert "Missing property nestedObj.nestedVal: expected number" in messages
    nested = next(d for d in sink.published[-1][1] if "nestedObj" in d.message)
    assert (nested.start_line, nested.start_char, nested.end_char) == (2, 2, 13)


def test_checker_mode_remaps_and_routes_header_errors(sample_document: Path) -> None:
    sink, store = _Sink(), _Store()
    checker = _Checker(
        diagnostics=[
            (8, 24, 6, 'List item 3 has incompatible type "str"'),
            (0, 30, 6, 'Module "model" has no attribute "MyType"'),
        ]
    )
    orchestrator = _checker_mode(checker, store, sink)
    text = sample_document.read_text(encoding="utf-8")

    asyncio.run(orchestrator.validate(_uri(sample_document), sample_document, text))

    artifact_path = sample_document.parent / "_jsontag_sample.py"
    assert [a.path for a in store.writes] == [artifact_path]
    assert store.writes[0].content.endswith(text + "\n)")
    assert store.deletes == [artifact_path]
    assert sink.published == [
        (
            _uri(sample_document),
            [DocumentDiagnostic(6, 24, 6, 30, 'List item 3 has incompatible type "str"')],
        )
    ]
    assert sink.errors == ['Error in $type: Module "model" has no attribute "MyType"']
    assert artifact_path in orchestrator.indexed


def test_only_the_latest_request_publishes(sample_document: Path) -> None:
    sink, store = _Sink(), _Store()
    checker = _BlockingChecker()
    orchestrator = _checker_mode(checker, store, sink)
    uri = _uri(sample_document)
    first_text = "{" + TAG + ', "v": 1}'
    second_text = "{" + TAG + ', "v": 2}'

    async def scenario() -> None:
        first = asyncio.create_task(orchestrator.validate(uri, sample_document, first_text))
        while len(checker.releases) < 1:
            await asyncio.sleep(0)
        second = asyncio.create_task(orchestrator.validate(uri, sample_document, second_text))
        while len(checker.releases) < 2:
            await asyncio.sleep(0)
        checker.releases[1].set()
        await second
        checker.releases[0].set()
        await first

    asyncio.run(scenario())

    assert [[d.message for d in diags] for _, diags in sink.published] == [["second"]]
    assert len(store.writes) == 2
    assert store.deletes == [sample_document.parent / "_jsontag_sample.py"]


def test_untagged_document_clears_previous_diagnostics(sample_document: Path) -> None:
    sink = _Sink()
    orchestrator = Orchestrator(sink)
    uri = _uri(sample_document)
    text = sample_document.read_text(encoding="utf-8")

    asyncio.run(orchestrator.validate(uri, sample_document, text))
    asyncio.run(orchestrator.validate(uri, sample_document, '{"value": "not checked"}'))
    asyncio.run(orchestrator.validate(uri, sample_document, "{}"))

    assert len(sink.published) == 2
    assert sink.published[-1] == (uri, [])


def test_untagged_document_never_runs_the_checker(sample_document: Path) -> None:
    sink, store = _Sink(), _Store()
    checker = _Checker()
    leftover = sample_document.parent / "_jsontag_sample.py"
    leftover.write_text("stale", encoding="utf-8")

    asyncio.run(
        _checker_mode(checker, store, sink).validate(_uri(sample_document), sample_document, "{}")
    )

    assert checker.checked == []
    assert store.writes == []
    assert store.deletes == [leftover]
    assert sink.published == []


def test_input_errors_notify_once_until_a_clean_pass(tmp_path: Path, model_path: Path) -> None:
    sink = _Sink()
    orchestrator = Orchestrator(sink)
    document = tmp_path / "doc.json"
    uri = _uri(document)
    broken = "{" + TAG + ', "value": }'

    asyncio.run(orchestrator.validate(uri, document, broken))
    asyncio.run(orchestrator.validate(uri, document, broken))
    assert len(sink.errors) == 1
    assert sink.errors[0].startswith("Invalid JSON: ")
    assert sink.published == []

    clean = (
        "{" + TAG + ', "value": 1, "arr": [], "enumProp": 2, "nestedObj": {"nestedVal": 1},'
        ' "intersectionType": {"nestedVal1": 1, "nestedVal2": "x"}}'
    )
    asyncio.run(orchestrator.validate(uri, document, clean))
    assert sink.published == [(uri, [])]
    asyncio.run(orchestrator.validate(uri, document, broken))
    assert len(sink.errors) == 2


def test_unknown_type_name_is_an_input_error(tmp_path: Path, model_path: Path) -> None:
    sink = _Sink()
    document = tmp_path / "doc.json"
    text = '{"$type": {"$from": "./model.py", "$import": "Nope"}}'
    asyncio.run(Orchestrator(sink).validate(_uri(document), document, text))
    assert len(sink.errors) == 1
    assert sink.errors[0].startswith("Type 'Nope' not found in ")
    assert sink.published == []


def test_missing_type_source_skips_the_checker(tmp_path: Path) -> None:
    sink, store = _Sink(), _Store()
    checker = _Checker()
    document = tmp_path / "doc.json"
    text = '{"$type": {"$from": "./missing.py", "$import": "T"}}'

    asyncio.run(_checker_mode(checker, store, sink).validate(_uri(document), document, text))

    assert sink.errors == ["Type source not found: ./missing.py"]
    assert store.writes == []
    assert checker.checked == []


def test_checker_failure_notifies_and_cleans_up(sample_document: Path) -> None:
    sink, store = _Sink(), _Store()
    checker = _Checker(error=CheckerUnavailable("Type checker failed: boom"))
    text = sample_document.read_text(encoding="utf-8")

    asyncio.run(
        _checker_mode(checker, store, sink).validate(_uri(sample_document), sample_document, text)
    )

    assert sink.errors == ["Type checker failed: boom"]
    assert sink.published == []
    assert store.deletes == [sample_document.parent / "_jsontag_sample.py"]


def test_untagged_completion_offers_type_snippet(tmp_path: Path) -> None:
    orchestrator = Orchestrator(_Sink())
    entries = asyncio.run(orchestrator.complete(tmp_path / "doc.json", "{\n  \n}", 1, 2))
    [entry] = entries
    assert entry.label == '"$type"'
    assert entry.insert_text == TYPE_SNIPPET
    assert entry.snippet and entry.preselect


def test_schema_documents_get_no_type_snippet(tmp_path: Path) -> None:
    orchestrator = Orchestrator(_Sink())
    text = '{\n  "$schema": "x",\n  \n}'
    assert asyncio.run(orchestrator.complete(tmp_path / "doc.json", text, 2, 2)) == []


def test_tagged_completion_offers_missing_properties(tmp_path: Path, model_path: Path) -> None:
    orchestrator = Orchestrator(_Sink())
    text = "{\n  " + TAG + ',\n  "value": 1,\n  \n}'
    entries = asyncio.run(orchestrator.complete(tmp_path / "doc.json", text, 3, 2))
    assert [entry.label for entry in entries] == [
        "arr",
        "optionalProp",
        "enumProp",
        "nestedObj",
        "intersectionType",
    ]
    assert entries[0].insert_text == '"arr"'
    assert entries[0].detail == "number[]"


def test_tagged_completion_offers_literal_values(tmp_path: Path, model_path: Path) -> None:
    orchestrator = Orchestrator(_Sink())
    text = "{\n  " + TAG + ',\n  "enumProp": \n}'
    entries = asyncio.run(orchestrator.complete(tmp_path / "doc.json", text, 2, 14))
    assert [entry.label for entry in entries] == ["1", "2", "true", "false", '"literal string"']


def test_nested_completion_requests_are_ignored(tmp_path: Path) -> None:
    orchestrator = Orchestrator(_Sink())
    document = tmp_path / "doc.json"
    orchestrator._active_completions.add(str(document))
    assert asyncio.run(orchestrator.complete(document, "{\n  \n}", 1, 2)) == []


def test_hover_renders_declared_type(sample_document: Path) -> None:
    orchestrator = Orchestrator(_Sink())
    text = sample_document.read_text(encoding="utf-8")

    info = asyncio.run(orchestrator.hover(sample_document, text, 5, 6))
    assert info is not None
    assert info.markdown == "```ts\nvalue: number\n```"
    assert (info.start, info.end) == ((5, 4), (5, 11))

    nested = asyncio.run(orchestrator.hover(sample_document, text, 10, 22))
    assert nested is not None
    assert nested.markdown == "```ts\nnestedVal: number\n```"
    assert (nested.start, nested.end) == ((10, 21), (10, 25))


def test_hover_ignores_tag_and_untagged_documents(sample_document: Path) -> None:
    orchestrator = Orchestrator(_Sink())
    text = sample_document.read_text(encoding="utf-8")
    assert asyncio.run(orchestrator.hover(sample_document, text, 2, 10)) is None
    assert asyncio.run(orchestrator.hover(sample_document, '{"a": 1}', 0, 2)) is None


def test_model_defaults_do_not_require_keys(tmp_path: Path) -> None:
    (tmp_path / "config_model.py").write_text(
        "from pydantic import BaseModel\n\n\n"
        "class Cfg(BaseModel):\n"
        "    name: str\n"
        "    retries: int = 3\n",
        encoding="utf-8",
    )
    document = tmp_path / "doc.json"
    text = '{"$type": {"$from": "./config_model.py", "$import": "Cfg"}, "name": "x"}'
    sink = _Sink()
    asyncio.run(Orchestrator(sink).validate(_uri(document), document, text))
    assert sink.errors == []
    assert sink.published == [(_uri(document), [])]


def test_undecodable_type_source_is_reported(tmp_path: Path) -> None:
    (tmp_path / "model.py").write_bytes(b"# caf\xe9\nclass MyType: ...\n")
    document = tmp_path / "doc.json"
    sink = _Sink()
    asyncio.run(Orchestrator(sink).validate(_uri(document), document, "{" + TAG + "}"))
    assert len(sink.errors) == 1
    assert sink.errors[0].startswith("Cannot read type source")
    assert sink.published == []


def test_deeply_nested_documents_fall_back_to_whole_document(tmp_path: Path) -> None:
    (tmp_path / "deep.py").write_text(
        "from typing import Any, TypedDict\n\n\n"
        "class Deep(TypedDict):\n"
        "    x: Any\n"
        "    n: int\n",
        encoding="utf-8",
    )
    document = tmp_path / "doc.json"
    text = (
        '{"$type": {"$from": "./deep.py", "$import": "Deep"}, "n": "no", "x": '
        + "[" * 600
        + "]" * 600
        + "}"
    )
    sink = _Sink()
    asyncio.run(Orchestrator(sink).validate(_uri(document), document, text))
    assert sink.errors == []
    [(_, [diagnostic])] = sink.published
    assert (diagnostic.start_line, diagnostic.start_char) == (0, 0)
    assert (diagnostic.end_line, diagnostic.end_char) == (0, len(text))
    assert diagnostic.message == "Type mismatch at n: expected number, got string"
