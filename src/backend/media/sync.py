from __future__ import annotations

from typing import Iterable

from src.backend.prompts.models import PromptSet

from .models import SyncCandidate


def collect_version_images(prompt_sets: Iterable[PromptSet]) -> list[SyncCandidate]:
    """
    Sync candidates for every version that carries an image.

    Each image is attributed to the owner of its prompt set and stamped with
    the version's generation time (falling back to the version creation time).
    """
    candidates: list[SyncCandidate] = []
    for prompt_set in prompt_sets:
        for version in prompt_set.versions:
            if not version.image_url:
                continue
            candidates.append(
                SyncCandidate(
                    owner_id=prompt_set.owner_id,
                    url=version.image_url,
                    prompt_set_id=prompt_set.id,
                    version_id=version.id,
                    created_at=version.image_generated_at or version.created_at or None,
                )
            )
    return candidates
