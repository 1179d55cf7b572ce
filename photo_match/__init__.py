"""
photo_match: find originals and near-duplicates of photos in a library.

Scores candidate photos against one or more targets with a weighted
combination of perceptual embedding, color histogram, aspect ratio,
resolution and average color, then returns ranked, thresholded top-K
matches per target.

Modules:
    engine         MatchingEngine: pre-filter, parallel scoring, ranking
    cache          Session-scoped compute-once descriptor cache
    features       ImageDescriptor and FeatureExtractor
    histograms     Binary color histogram + average color
    embeddings     Pluggable embedding providers
    scoring        Weighted multi-signal similarity scoring
    prefilter      Cheap metadata pre-filter
    config         MatchConfig, presets and environment defaults
    store          Asset store / persistence sink contracts
    preprocessing  Pixel buffer decoding and normalization
    errors         Error taxonomy
"""

from .cache import FeatureCache
from .config import MatchConfig, PrefilterConfig, DUPLICATE, SIMILAR, ORIGINAL_FINDER
from .embeddings import (
    EmbeddingProvider, NullEmbeddingProvider, ThumbnailEmbeddingProvider,
    CompositionEmbeddingProvider, DominantColorEmbeddingProvider,
)
from .engine import MatchingEngine, MatchReport, ErrorSummary, EngineState
from .errors import (
    MatchingError, AssetError, ExtractionFailed, NotFound, EmbeddingFailed,
    InvalidWeights,
)
from .features import FeatureExtractor, ImageDescriptor
from .scoring import (
    WeightConfig, SimilarityScorer, ReasonBands, MatchCandidate, MatchGroup,
    DUPLICATE_WEIGHTS, SIMILAR_WEIGHTS, compute_similarity,
)
from .store import (
    AssetStore, AssetMetadata, PixelBuffer, PersistenceSink,
    InMemoryAssetStore, DirectoryAssetStore, DirectoryExportSink,
)

__version__ = "1.0.0"
