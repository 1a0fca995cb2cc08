# ideator/dev_package.py
import io
import json
import logging
import zipfile
from typing import Any, Iterable

from langchain_core.messages import HumanMessage

from ideator.artifact_parser import parse_payload
from ideator.base_utils import BaseUtils
from ideator.fallback_templates import DEV_PACKAGE_FILES, build_fallback_files
from ideator.ideator_prompts import DEV_PACKAGE_PROMPT
from ideator.model_ladder import ModelLadder
from ideator.model_props import CandidateOptions
from ideator.schemas import PackageDocument, PackageFile

logger = logging.getLogger("ideator_backend")

DOC_SAMPLE_CHARS = 2000


def _has_files(data: dict) -> bool:
    files = data.get("files")
    return isinstance(files, list) and len(files) > 0


class DevPackageBuilder(BaseUtils):
    """
    Spec -> "files" JSON from the model -> zip archive.
    Falls back to the deterministic templates when generation or parsing fails.
    """

    def __init__(self, ladder: ModelLadder, temperature: float = 0.2, max_output_tokens: int = 8192):
        self.ladder = ladder
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def _join(self, value: Any) -> str:
        if isinstance(value, list):
            return " | ".join(self._coerce_field_to_str(v) for v in value)
        return self._coerce_field_to_str(value)

    def build_prompt(self, idea: dict | None, documents: Iterable[PackageDocument] = ()) -> str:
        idea = idea or {}
        documents = list(documents or [])
        if documents:
            docs_section = "PROJECT DOCS (samples/truncated):\n" + "\n".join(
                f"- {d.filename}: {d.sample[:DOC_SAMPLE_CHARS] if d.sample else d.note}" for d in documents
            )
        else:
            docs_section = "No project documents uploaded yet."

        return self.unsafe_string_format(
            DEV_PACKAGE_PROMPT,
            file_list=", ".join(DEV_PACKAGE_FILES),
            title=idea.get("title") or "",
            summary=idea.get("summary") or "",
            steps=self._join(idea.get("steps") or []),
            agent_stack=json.dumps(idea.get("agent_stack") or {}, indent=2, ensure_ascii=False),
            client_requirements=self._join(idea.get("client_requirements") or []),
            security_considerations=self._join(idea.get("security_considerations") or []),
            future_enhancements=self._join(idea.get("future_enhancements") or []),
            docs_section=docs_section,
        )

    def _files_from_payload(self, data: dict | None) -> list[PackageFile]:
        out: list[PackageFile] = []
        for f in (data or {}).get("files") or []:
            if not isinstance(f, dict):
                continue
            path = str(f.get("path") or "").strip() or "FILE.md"
            content = f.get("content")
            if not isinstance(content, str):
                content = json.dumps(content, indent=2, ensure_ascii=False)
            out.append(PackageFile(path=path, content=content))
        return out

    async def build_files(self, idea: dict | None, documents: Iterable[PackageDocument] = ()) -> list[PackageFile]:
        prompt = self.build_prompt(idea, documents)
        options = CandidateOptions(temperature=self.temperature, max_output_tokens=self.max_output_tokens)

        raw = ""
        try:
            raw = await self.ladder.generate(
                [HumanMessage(content=prompt)],
                options,
                secondary=self.ladder.config.dev_package_fallback_models,
            )
        except Exception as e:
            logger.warning(f"Dev package model generation failed; falling back: {e}")

        files = self._files_from_payload(parse_payload(raw, accept=_has_files))
        if not files:
            logger.info("Dev package built from fallback templates")
            files = [PackageFile(**f) for f in build_fallback_files(idea)]
        return files

    def to_zip(self, files: Iterable[PackageFile]) -> bytes:
        buf = io.BytesIO()
        seen: set[str] = set()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            for f in files:
                # no absolute paths or parent traversal inside the archive
                name = "/".join(p for p in f.path.replace("\\", "/").split("/") if p not in ("", ".", ".."))
                name = name or "FILE.md"
                if name in seen:
                    continue
                seen.add(name)
                zf.writestr(name, f.content)
        return buf.getvalue()

    async def build_zip(self, idea: dict | None, documents: Iterable[PackageDocument] = ()) -> bytes:
        return self.to_zip(await self.build_files(idea, documents))
