"""End-to-end evaluation: identity, enrichment, prompt, generation, report.

One ``EvaluationPipeline.evaluate`` call handles one submission. Every exit
path, success or failure, schedules an audit entry without awaiting it.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator

from auto_eval.audit import AuditDispatcher, LoggingAuditSink, build_entry
from auto_eval.clients import (
    SHARED_NHTSA_CACHE,
    SHARED_SEARCH_CACHE,
    AssistantsClient,
    ListingScraper,
    NHTSAClient,
    SearchClient,
    SupabaseAuditStore,
)
from auto_eval.config import EvaluatorConfig
from auto_eval.errors import EvaluationError, MalformedOutputError
from auto_eval.models import (
    EvaluationReport,
    EvaluationRequest,
    InvocationContext,
    ScrapedListing,
)
from auto_eval.pipeline.enrichment import (
    AuctionSearchSource,
    EnrichmentFanout,
    ListingScrapeSource,
    RecallSource,
    RetailSearchSource,
    VinSearchSource,
    detect_listing_only,
    find_listing_urls,
)
from auto_eval.pipeline.generation import GenerationJobRunner, select_photos
from auto_eval.pipeline.identity import IdentityResolver
from auto_eval.pipeline.postprocess import ResponsePostProcessor
from auto_eval.pipeline.prompt import PromptAssembler

logger = logging.getLogger(__name__)

_GENERIC_FAILURE = "Evaluation failed due to an internal error."


def render_listing(listing: ScrapedListing) -> str:
    lines = [f"## Listing: {listing.title or listing.url}", f"- URL: {listing.url}"]
    if listing.price is not None:
        lines.append(f"- Price: ${listing.price:,.0f}")
    if listing.mileage is not None:
        lines.append(f"- Mileage: {listing.mileage:,} mi")
    if listing.condition:
        lines.append(f"- Condition: {listing.condition}")
    return "\n".join(lines)


class EvaluationPipeline:
    def __init__(
        self,
        *,
        resolver: IdentityResolver,
        fanout: EnrichmentFanout,
        assembler: PromptAssembler,
        runner: GenerationJobRunner,
        postprocessor: ResponsePostProcessor,
        audit: AuditDispatcher | None = None,
    ) -> None:
        self.resolver = resolver
        self.fanout = fanout
        self.assembler = assembler
        self.runner = runner
        self.postprocessor = postprocessor
        self.audit = audit

    async def evaluate(
        self, request: EvaluationRequest, context: InvocationContext | None = None
    ) -> EvaluationReport:
        context = context or InvocationContext()
        try:
            report = await self._evaluate(request)
        except MalformedOutputError as exc:
            self._record(
                context,
                request,
                {"error": exc.message, "code": exc.code, "rawText": exc.raw_text},
                exc.status,
            )
            raise
        except EvaluationError as exc:
            self._record(context, request, {"error": exc.message, "code": exc.code}, exc.status)
            raise
        except Exception:
            logger.exception("Unexpected evaluation failure")
            self._record(context, request, {"error": _GENERIC_FAILURE}, 500)
            raise
        self._record(context, request, {"report": report.to_dict()}, 200)
        return report

    async def _evaluate(self, request: EvaluationRequest) -> EvaluationReport:
        listing_url = detect_listing_only(request)
        if listing_url:
            return await self._listing_only(listing_url)

        identity = await self.resolver.resolve(request)
        listing_urls = find_listing_urls(request)
        bundle = await self.fanout.enrich(
            identity,
            identity.vin,
            request.condition_notes,
            zip_code=request.zip_code,
            listing_url=listing_urls[0] if listing_urls else None,
        )
        if bundle.failures:
            logger.info("Enrichment degraded branches: %s", sorted(bundle.failures))

        photos = select_photos(request.photos)
        payload = self.assembler.assemble(
            request, identity, bundle, has_images=bool(photos)
        )
        raw = await self.runner.run(payload, photos)
        logger.info(
            "Generation run %s completed in %.1fs after %d polls",
            raw.job.run_id,
            raw.job.elapsed,
            raw.job.retries,
        )
        report = self.postprocessor.process(raw.text, request)
        report.listing = bundle.listing
        return report

    async def _listing_only(self, url: str) -> EvaluationReport:
        listing, failure = await self.fanout.scrape_only(url)
        if listing is None:
            report = EvaluationReport(raw_text="", mode="listing")
            report.warn(
                "listing_unavailable",
                f"Could not read listing details from {url}"
                + (f": {failure}" if failure else "."),
            )
            return report
        text = render_listing(listing)
        return EvaluationReport(
            raw_text=text,
            sections={"listing": text},
            mode="listing",
            listing=listing,
        )

    def _record(
        self,
        context: InvocationContext,
        request: EvaluationRequest,
        response: dict[str, Any],
        status_code: int,
    ) -> None:
        if self.audit is None:
            return
        self.audit.submit(build_entry(context, request, response, status_code))


def build_audit_dispatcher(config: EvaluatorConfig) -> AuditDispatcher:
    """Supabase-backed dispatcher when configured, log-only otherwise."""
    if config.supabase_url and config.supabase_key:
        return AuditDispatcher(SupabaseAuditStore(config.supabase_url, config.supabase_key))
    logger.warning("Supabase is not configured; audit entries go to the log only")
    return AuditDispatcher(LoggingAuditSink())


@asynccontextmanager
async def open_pipeline(
    config: EvaluatorConfig, *, audit: AuditDispatcher | None = None
) -> AsyncIterator[EvaluationPipeline]:
    """Enter every outbound client and yield a wired pipeline."""
    async with AsyncExitStack() as stack:
        nhtsa = await stack.enter_async_context(NHTSAClient(cache=SHARED_NHTSA_CACHE))
        search = await stack.enter_async_context(
            SearchClient(config.search_api_key, config.search_cx, cache=SHARED_SEARCH_CACHE)
        )
        scraper = await stack.enter_async_context(ListingScraper())
        assistants = await stack.enter_async_context(
            AssistantsClient(
                config.openai_api_key,
                config.assistant_id,
                base_url=config.openai_base_url,
            )
        )
        fanout = EnrichmentFanout(
            [
                RecallSource(nhtsa),
                RetailSearchSource(search),
                AuctionSearchSource(search),
                VinSearchSource(search),
                ListingScrapeSource(scraper),
            ],
            branch_timeout=config.branch_timeout,
        )
        yield EvaluationPipeline(
            resolver=IdentityResolver(nhtsa, timeout=config.vin_timeout),
            fanout=fanout,
            assembler=PromptAssembler(output_mode=config.output_mode),
            runner=GenerationJobRunner(
                assistants,
                poll_interval=config.poll_interval,
                timeout=config.job_timeout,
                max_polls=config.max_polls,
            ),
            postprocessor=ResponsePostProcessor(mode=config.output_mode),
            audit=audit,
        )
