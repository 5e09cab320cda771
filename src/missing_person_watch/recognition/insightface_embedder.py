"""InsightFace wrapper for face detection, landmarks and embedding extraction."""

from io import BytesIO

import numpy as np
from insightface.app import FaceAnalysis
from PIL import Image, ImageOps

from missing_person_watch.config import DETECTION_SIZE, INSIGHTFACE_MODEL_NAME
from missing_person_watch.models import FaceObservation


def decode_photo(content: bytes) -> np.ndarray:
    """Decode encoded image bytes to a BGR array, honouring EXIF orientation."""
    img = Image.open(BytesIO(content))
    img = ImageOps.exif_transpose(img).convert("RGB")
    return np.asarray(img)[:, :, ::-1].copy()


class InsightFaceEmbedder:
    """Detect faces and extract ArcFace embeddings using InsightFace."""

    def __init__(
        self,
        model_name: str = INSIGHTFACE_MODEL_NAME,
        device: str = "cuda",
    ) -> None:
        providers = (
            ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if device == "cuda"
            else ["CPUExecutionProvider"]
        )
        # landmark_3d_68 supplies the eye/mouth contours used for liveness
        self.app = FaceAnalysis(
            name=model_name,
            providers=providers,
            allowed_modules=["detection", "landmark_3d_68", "recognition"],
        )
        self.app.prepare(ctx_id=0 if device == "cuda" else -1, det_size=DETECTION_SIZE)
        self.model_name = model_name

    def detect(self, frame: np.ndarray) -> list[FaceObservation]:
        """Detect every face in a BGR frame.

        Args:
            frame: BGR image array, as produced by OpenCV.

        Returns:
            One FaceObservation per detected face.
        """
        faces = self.app.get(frame)
        observations = []

        for face in faces:
            bbox = face.bbox.astype(float)
            lmk = getattr(face, "landmark_3d_68", None)
            emb = getattr(face, "normed_embedding", None)
            observations.append(
                FaceObservation(
                    bbox=(bbox[0], bbox[1], bbox[2], bbox[3]),
                    det_score=float(face.det_score),
                    landmarks=lmk[:, :2].astype(np.float64) if lmk is not None else None,
                    embedding=emb.astype(np.float32) if emb is not None else None,
                )
            )

        return observations

    def embed_single(self, image: np.ndarray) -> np.ndarray | None:
        """Return the embedding of the largest face in ``image``, or None."""
        faces = [f for f in self.detect(image) if f.embedding is not None]
        if not faces:
            return None
        largest = max(faces, key=lambda f: (f.bbox[2] - f.bbox[0]) * (f.bbox[3] - f.bbox[1]))
        return largest.embedding

    def embed_photo(self, content: bytes) -> np.ndarray | None:
        """Decode an uploaded photo and embed its largest face."""
        return self.embed_single(decode_photo(content))
