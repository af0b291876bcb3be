# bpmkey Configuration
# All default values and tuning constants

from dataclasses import dataclass, field, is_dataclass


CURRENT_CONFIG_VERSION = 1

# Flux bands, in the order they are tracked
BANDS = ('low', 'mid', 'high', 'combined')


@dataclass
class FluxConfig:
    """Spectral flux tracking"""
    sub_band_divisor: int = 8             # Only the lowest 1/N of the bins are tracked (~0 .. sr/16 Hz)
    vocal_low_hz: float = 200.0           # Vocal band discounted to avoid vocal-driven bias
    vocal_high_hz: float = 2000.0
    vocal_weight: float = 0.9
    bass_cutoff_hz: float = 200.0         # Below this counts as bass for the bass-heavy boost
    bass_boost: float = 1.7               # Bass multiplier when the track is bass-heavy
    bass_heavy_ratio: float = 0.5         # low / total energy above this = bass-heavy
    alpha_mid_dominant: float = 0.2       # Smoother flux when the mid band dominates
    alpha_default: float = 0.4


@dataclass
class OnsetConfig:
    """Adaptive-threshold onset detection"""
    kernel_outer: float = 0.1             # 5-tap kernel: outer/inner/centre weights
    kernel_inner: float = 0.2
    center_weight_primary: float = 0.2
    center_weight_default: float = 0.4
    window_size: int = 60                 # +/- samples for local mean / std
    threshold_k: float = 1.0              # threshold = mean + k * std
    min_threshold: float = 1e-3           # Absolute floor so near-silence never fires
    relative_floor: float = 0.25          # A rise must also exceed this share of the band's mean flux
    min_interval_ms: float = 60.0         # Per-band refractory time
    merge_window_ms: float = 10.0         # Pooled onsets closer than this collapse into one


@dataclass
class TempoConfig:
    """Onset-interval histogram tempo estimation"""
    min_bpm: float = 50.0
    max_bpm: float = 200.0
    min_onsets: int = 10
    resolution_bpm: float = 0.5           # Histogram bucket width
    popular_low_bpm: float = 80.0         # Popular-music range gets boosted votes
    popular_high_bpm: float = 140.0
    popular_boost: float = 2.5
    mid_band_low_bpm: float = 100.0       # Extra boost when mid is the primary band
    mid_band_high_bpm: float = 140.0
    mid_band_boost: float = 1.1
    octave_tolerance: float = 0.01        # Interval/period ratio error accepted as a match


@dataclass
class AutocorrConfig:
    """Time-domain autocorrelation tempo cross-check"""
    min_bpm: float = 40.0
    max_bpm: float = 240.0
    min_std: float = 0.01                 # Below this a raw sample buffer is too weak to analyse
    envelope_min_std: float = 1e-3        # Same floor for the per-tick RMS envelope
    envelope_min_variation: float = 0.05  # Envelope std / mean below this = steady tone or noise
    threshold_scale: float = 0.15         # Dynamic threshold = std * scale, clamped below
    threshold_min: float = 0.1
    threshold_max: float = 0.3


@dataclass
class FusionConfig:
    """Candidate fusion and Kalman smoothing"""
    trusted_confidence: float = 0.97      # Histogram below this defers to autocorrelation
    agreement_bpm: float = 10.0           # Candidates closer than this are averaged
    agreement_boost: float = 1.05
    acf_confidence: float = 0.9
    fallback_confidence: float = 0.8
    # Calibration knobs: tempos observed on a reference corpus
    reference_tempos: list = field(default_factory=lambda: [133.0, 106.0])
    reference_window_bpm: float = 10.0
    reference_confidence: float = 0.95
    max_confidence: float = 0.98          # Cap on cross-validated confidence
    process_noise: float = 0.002
    measurement_noise: float = 0.3
    initial_variance: float = 4.0
    halve_below_confidence: float = 0.95  # adjust_bpm only halves >max when less confident than this


@dataclass
class ConfidenceConfig:
    """Onset-spacing confidence score"""
    floor: float = 0.8
    ceiling: float = 0.98
    stability_weight: float = 0.5
    energy_weight: float = 0.2
    range_weight: float = 0.3
    range_bonus: float = 1.0
    tolerance: float = 0.01


@dataclass
class KeyConfig:
    """Chroma key classification"""
    history_frames: int = 100             # Frequency frames kept for chroma
    min_frames: int = 40                  # Fewer frames than this falls back to the last-known key
    min_freq_hz: float = 100.0
    max_freq_hz: float = 6000.0
    harmonic_refs_hz: list = field(default_factory=lambda: [440.0, 880.0, 220.0, 110.0, 55.0])
    harmonic_tolerance_hz: float = 10.0
    harmonic_boost: float = 1.4
    taper_center_hz: float = 600.0
    taper_span_hz: float = 6000.0
    mid_dominant_ratio: float = 0.5
    mid_weight_dominant: float = 0.7
    mid_weight_default: float = 0.9
    smoothing_primary_mid: float = 0.7    # Centre weight of the circular chroma blend
    smoothing_default: float = 0.6
    min_level: float = 1e-3               # Smoothed chroma peak (linear amplitude per frame) below this = too weak
    min_contrast: float = 1.05            # Smoothed chroma peak / mean below this = no tonal centre
    low_band_minor_bias: float = 1.2      # Calibration knob: bass-heavy tracks lean minor
    ratio_shift_scale: float = 0.6        # Calibration knob: key shift per semitone in ratio mode


@dataclass
class SessionConfig:
    """Tick-driven session timing and gating"""
    tick_interval_ms: int = 50
    early_check_ms: int = 3000
    max_duration_ms: int = 10000
    early_exit_confidence: float = 0.97
    cache_confidence: float = 0.97
    status_interval_ms: int = 1000
    intro_skip_s: float = 10.0
    outro_skip_s: float = 10.0
    abort_on_transient: bool = True       # False = skip ticks during ads / intro / outro
    max_skipped_ticks: int = 200
    balanced_mid_ratio: float = 0.4       # mid / total above this picks the mid band


@dataclass
class AudioConfig:
    """Frame sampler settings"""
    sample_rate: int = 44100
    fft_size: int = 2048
    floor_db: float = -100.0              # Frequency frames are reported in dB above this floor


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    flux: FluxConfig = field(default_factory=FluxConfig)
    onset: OnsetConfig = field(default_factory=OnsetConfig)
    tempo: TempoConfig = field(default_factory=TempoConfig)
    autocorr: AutocorrConfig = field(default_factory=AutocorrConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    key: KeyConfig = field(default_factory=KeyConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)

    # Global
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)
    history_enabled: bool = True      # Record finished analyses to the history report
    history_max_entries: int = 100


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        setattr(target, key, value)


# (section, field) pairs holding a probability-like value
_UNIT_FIELDS = (
    ('fusion', 'trusted_confidence'),
    ('fusion', 'acf_confidence'),
    ('fusion', 'fallback_confidence'),
    ('fusion', 'reference_confidence'),
    ('fusion', 'max_confidence'),
    ('fusion', 'halve_below_confidence'),
    ('confidence', 'floor'),
    ('confidence', 'ceiling'),
    ('session', 'early_exit_confidence'),
    ('session', 'cache_confidence'),
)


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Replaces None values with defaults, clamps ranges and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    defaults = Config()
    if version < 1:
        # Files written before versioning could hold nulls for any field
        for section_name in ('flux', 'onset', 'tempo', 'autocorr', 'fusion',
                             'confidence', 'key', 'session', 'audio'):
            section = getattr(config, section_name)
            default_section = getattr(defaults, section_name)
            for name in vars(default_section):
                if getattr(section, name, None) is None:
                    setattr(section, name, getattr(default_section, name))

    if getattr(config, 'log_level', None) is None:
        config.log_level = defaults.log_level
    if getattr(config, 'history_enabled', None) is None:
        config.history_enabled = True
    if getattr(config, 'history_max_entries', None) is None:
        config.history_max_entries = defaults.history_max_entries

    for section_name, name in _UNIT_FIELDS:
        section = getattr(config, section_name)
        try:
            value = float(getattr(section, name))
        except (TypeError, ValueError):
            value = float(getattr(getattr(defaults, section_name), name))
        setattr(section, name, max(0.0, min(1.0, value)))

    # Early check must happen strictly before the hard ceiling
    session = config.session
    if session.early_check_ms >= session.max_duration_ms:
        session.early_check_ms = max(0, session.max_duration_ms - session.tick_interval_ms)

    config.version = CURRENT_CONFIG_VERSION
