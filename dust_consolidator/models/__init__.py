"""Domain models for dust-consolidator.

Modules:
- job: ConsolidationJob, JobStatus and the transition graph
- quote: QuoteRequest, AggregatorQuote, BestQuote, ExecutionPayload
- gas: GasRecord, PriceBasis, SponsorshipLimits
- messages: Cross-chain message envelopes and payload codec
"""

__all__: list[str] = []
