from __future__ import annotations

import logging
import time
from typing import Iterable, List, Optional

from figma2mjml.compiler import CompileOptions, compile_mjml, mjml_stats, preview_text
from figma2mjml.models import ConversionResult, Issue, LayoutDescription
from figma2mjml.orchestrator import FallbackOrchestrator
from figma2mjml.validator import validate_and_correct

log = logging.getLogger(__name__)


def convert(
    description: LayoutDescription,
    orchestrator: FallbackOrchestrator,
    provider_names: Optional[Iterable[str]] = None,
    extra_warnings: Optional[List[Issue]] = None,
    compile_options: Optional[CompileOptions] = None,
) -> ConversionResult:
    """generate -> validate/correct -> compile.

    Structural validation errors do not stop compilation; only a compiler
    failure makes the result unsuccessful. Validator warnings are merged
    into the reported warning set.
    """
    started = time.time()
    generation = orchestrator.generate(description, provider_names)

    report = validate_and_correct(generation.document.raw)
    if not report.is_valid:
        log.warning(
            "Generated MJML from %s has %d structural error(s); compiling anyway",
            generation.provider_used,
            len(report.errors),
        )

    compiled = compile_mjml(report.corrected_document, compile_options)
    elapsed_ms = int((time.time() - started) * 1000)

    stats = mjml_stats(report.corrected_document)
    stats["previewText"] = preview_text(report.corrected_document)

    log.info(
        "Conversion of %r finished: provider=%s fallback=%s compiled=%s in %dms",
        description.source_name,
        generation.provider_used,
        generation.used_fallback,
        compiled.success,
        elapsed_ms,
    )
    return ConversionResult(
        success=compiled.success,
        mjml=report.corrected_document,
        html=compiled.output,
        used_fallback=generation.used_fallback,
        provider_used=generation.provider_used,
        attempt_errors=generation.attempt_errors,
        errors=list(report.errors) + list(compiled.errors),
        warnings=list(extra_warnings or []) + list(compiled.warnings) + list(report.warnings),
        processing_time_ms=elapsed_ms,
        stats=stats,
    )
