"""
pcmguard – audio content-security engine for streamed float PCM.

The public API re-exports the main classes:

    OwnershipEmbedder / OwnershipExtractor   – spread-spectrum ownership mark
    IntegrityEmbedder / IntegrityVerifier    – fragile hash-chain mark
    AesCtrCipher                             – seekable PCM encryption
    FingerprintGenerator / AudioIdentifier   – landmark fingerprinting
    WatermarkTuner                           – attack-validated parameter search
"""
from .config import EncryptionConfig, FingerprintParams, TunerParams, WatermarkConfig
from .crypto import AesCtrCipher
from .detector import OwnershipExtractor
from .embedder import OwnershipEmbedder
from .errors import ErrorKind, Failure, PcmGuardError, Result
from .fingerprint import AudioIdentifier, FingerprintGenerator
from .integrity import IntegrityEmbedder, IntegrityVerifier
from .tuner import WatermarkTuner

__all__: list[str] = [
    "AesCtrCipher",
    "AudioIdentifier",
    "EncryptionConfig",
    "ErrorKind",
    "Failure",
    "FingerprintGenerator",
    "FingerprintParams",
    "IntegrityEmbedder",
    "IntegrityVerifier",
    "OwnershipEmbedder",
    "OwnershipExtractor",
    "PcmGuardError",
    "Result",
    "TunerParams",
    "WatermarkConfig",
    "WatermarkTuner",
]
