from __future__ import annotations

import pytest

from eventboard import uploads
from eventboard.errors import ValidationError


def test_save_image_names_file_with_prefix(tmp_path):
    url = uploads.save_image(
        bucket=uploads.AVATARS,
        data=b"\x89PNG fake",
        content_type="image/png",
        filename="me.PNG",
        max_bytes=1024,
        prefix="user-1",
        uploads_dir=tmp_path,
    )

    name = url.rsplit("/", 1)[1]
    assert url.startswith("/media/avatars/user-1-")
    assert name.endswith(".png")
    assert (tmp_path / "avatars" / name).read_bytes() == b"\x89PNG fake"


def test_save_image_falls_back_to_content_type_extension(tmp_path):
    url = uploads.save_image(
        bucket=uploads.EVENT_IMAGES,
        data=b"jpeg",
        content_type="image/jpeg",
        filename=None,
        max_bytes=1024,
        uploads_dir=tmp_path,
    )
    assert url.endswith(".jpeg")
    assert len(list((tmp_path / "event-images").iterdir())) == 1


@pytest.mark.parametrize(
    ("content_type", "size", "message"),
    [
        ("text/plain", 10, "File must be an image"),
        (None, 10, "File must be an image"),
        ("image/png", 0, "No file provided"),
        ("image/png", 4096, "File size must be less than 2KB"),
    ],
)
def test_validate_image_rejections(content_type, size, message):
    with pytest.raises(ValidationError, match=message):
        uploads.validate_image(content_type=content_type, size=size, max_bytes=2048)


def test_rejected_upload_writes_nothing(tmp_path):
    with pytest.raises(ValidationError):
        uploads.save_image(
            bucket=uploads.AVATARS,
            data=b"not an image",
            content_type="text/plain",
            filename="notes.txt",
            max_bytes=1024,
            uploads_dir=tmp_path,
        )
    assert not (tmp_path / "avatars").exists()
