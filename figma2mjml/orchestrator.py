from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from figma2mjml.config import Settings
from figma2mjml.models import (
    GeneratedDocument,
    GenerationResult,
    LayoutDescription,
    ProviderAttempt,
)
from figma2mjml.providers import ProviderAdapter, build_adapters
from figma2mjml.synthesizer import SYNTHESIZED, TemplateSynthesizer

log = logging.getLogger(__name__)

# names that refer to the synthesizer itself; reaching one ends the chain
TERMINAL_NAMES = frozenset({SYNTHESIZED, "enhanced-fallback", "intelligent-fallback"})


class FallbackOrchestrator:
    """Ordered provider chain with the template synthesizer as the fixed last link.

    Providers are tried one at a time, in order, with a single attempt each.
    The first one that returns a non-empty document wins. Every failure is
    recorded and the chain moves on; when nothing answers, the synthesizer
    builds the document, so generate() always returns one.
    """

    def __init__(
        self,
        adapters: Dict[str, ProviderAdapter],
        synthesizer: Optional[TemplateSynthesizer] = None,
        default_order: Optional[Iterable[str]] = None,
    ) -> None:
        self.adapters = dict(adapters)
        self.synthesizer = synthesizer or TemplateSynthesizer()
        self.default_order: List[str] = list(default_order) if default_order is not None else list(self.adapters)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FallbackOrchestrator":
        return cls(build_adapters(settings), default_order=settings.provider_order)

    def generate(
        self, description: LayoutDescription, provider_names: Optional[Iterable[str]] = None
    ) -> GenerationResult:
        names = list(provider_names) if provider_names is not None else list(self.default_order)
        attempt_errors: List[ProviderAttempt] = []
        log.info("generation providers_order=%s", names)

        for raw_name in names:
            name = (raw_name or "").strip().lower()
            if name in TERMINAL_NAMES:
                break
            adapter = self.adapters.get(name)
            if adapter is None:
                log.warning("provider=%s unknown; skipping", name)
                attempt_errors.append(ProviderAttempt(provider=name, error_message=f"Unknown provider: {name}"))
                continue

            log.info("generation attempting provider=%s", name)
            try:
                response = adapter.generate(description)
            except Exception as e:
                message = str(e) or repr(e)
                log.warning("provider=%s failed: %s", name, message)
                attempt_errors.append(ProviderAttempt(provider=name, error_message=message))
                continue

            if not response.success or not (response.raw_text or "").strip():
                log.warning("provider=%s returned an empty document", name)
                attempt_errors.append(
                    ProviderAttempt(provider=name, error_message=f"{name} returned an empty document")
                )
                continue

            log.info("generation chosen provider=%s", name)
            return GenerationResult(
                document=GeneratedDocument(
                    source_provider=name,
                    used_fallback=False,
                    raw=response.raw_text,
                    model=response.model,
                    usage=response.usage,
                ),
                provider_used=name,
                used_fallback=False,
                attempt_errors=attempt_errors,
            )

        if attempt_errors:
            log.warning("All %d provider(s) failed; using the template synthesizer", len(attempt_errors))
        else:
            log.info("No providers attempted; using the template synthesizer")
        document = self.synthesizer.synthesize(description.frame, description.source_name)
        return GenerationResult(
            document=document,
            provider_used=document.source_provider,
            used_fallback=True,
            attempt_errors=attempt_errors,
        )
