"""Configuration model: immutable data containers describing provider profiles."""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class ProviderProfile:
    """Describes one configured provider instance.

    Credentials are expected to be resolved by the caller and passed in
    ``options``; they are never read from anywhere else.

    :param id: Unique profile identifier.
    :param provider: Provider type tag (e.g. ``"local"``, ``"s3"``).
    :param display_name: Human-readable label.
    :param options: Provider constructor keyword arguments.
    """

    id: str
    provider: str
    display_name: str = ""
    options: dict[str, object] = dataclasses.field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.display_name or self.id


@dataclasses.dataclass(frozen=True)
class ProfilesConfig:
    """Top-level configuration container.

    :param profiles: Mapping of profile ids to their profiles.
    """

    profiles: dict[str, ProviderProfile] = dataclasses.field(default_factory=dict)

    def validate(self) -> None:
        """Validate that every profile is keyed by its own id and names a provider.

        :raises ValueError: If a profile is inconsistent.
        """
        for key, profile in self.profiles.items():
            if not profile.id:
                raise ValueError(f"Profile '{key}' has an empty id")
            if profile.id != key:
                raise ValueError(f"Profile '{key}' is registered under a different id '{profile.id}'")
            if not profile.provider:
                raise ValueError(f"Profile '{key}' does not name a provider type")

    def get(self, profile_id: str) -> ProviderProfile:
        """:raises KeyError: If no profile with this id exists."""
        try:
            return self.profiles[profile_id]
        except KeyError:
            available = sorted(self.profiles)
            raise KeyError(f"Unknown profile '{profile_id}'. Available profiles: {available}") from None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ProfilesConfig:
        """Construct from a plain dict (e.g. parsed TOML/JSON).

        :param data: Dict with a ``profiles`` key mapping ids to profile dicts.
        """
        raw_profiles = data.get("profiles", {})
        if not isinstance(raw_profiles, dict):
            msg = "Expected 'profiles' to be a dict"
            raise TypeError(msg)

        profiles: dict[str, ProviderProfile] = {}
        for profile_id, raw in raw_profiles.items():
            if not isinstance(raw, dict):
                msg = f"Profile '{profile_id}' must be a dict"
                raise TypeError(msg)
            profiles[str(profile_id)] = ProviderProfile(
                id=str(raw.get("id", profile_id)),
                provider=str(raw["provider"]),
                display_name=str(raw.get("display_name", "")),
                options=dict(raw.get("options", {})),
            )

        return cls(profiles=profiles)
