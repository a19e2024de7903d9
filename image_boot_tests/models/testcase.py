"""Models for image test cases loaded from JSON files."""

from typing import Any

from pydantic import AliasChoices, Field

from image_boot_tests.models.base import Model


class ComposeRequest(Model):
    """Identifies the image a test case builds."""

    distro: str = Field(
        ...,
        validation_alias=AliasChoices("distro", "Distro"),
        description="Distribution name (e.g. fedora-32)",
    )
    arch: str = Field(
        ...,
        validation_alias=AliasChoices("arch", "Arch"),
        description="Architecture the image is built for",
    )
    filename: str = Field(
        ...,
        validation_alias=AliasChoices("filename", "Filename"),
        description="Name of the image file inside the output directory",
    )


class BootSpec(Model):
    """Boot directive of a test case."""

    # Kept as a plain string: an unknown backend is a configuration error
    # raised by the dispatcher, not a schema error.
    type: str = Field(
        ...,
        validation_alias=AliasChoices("type", "Type"),
        description="Backend selector (qemu, nspawn, nspawn-extract, aws, ...)",
    )


class TestCase(Model):
    """Complete image test case."""

    __test__ = False

    compose_request: ComposeRequest = Field(
        ...,
        validation_alias=AliasChoices(
            "compose-request", "compose_request", "ComposeRequest"
        ),
    )
    manifest: Any = Field(
        ...,
        validation_alias=AliasChoices("manifest", "Manifest"),
        description="osbuild manifest, passed through untouched",
    )
    image_info: Any | None = Field(
        default=None,
        validation_alias=AliasChoices("image-info", "image_info", "ImageInfo"),
        description="Expected image-info document",
    )
    boot: BootSpec | None = Field(
        default=None,
        validation_alias=AliasChoices("boot", "Boot"),
    )
