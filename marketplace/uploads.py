import mimetypes
import os
from typing import List, Optional, Tuple
from uuid import uuid4

from flask import current_app
from werkzeug.utils import secure_filename

UPLOAD_URL_PREFIX = "/uploads/"
ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "bmp"}
MAX_PRODUCT_IMAGES = 5


def allowed_image_extension(filename: str) -> bool:
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in ALLOWED_IMAGE_EXTENSIONS


def image_extension(image_file) -> str:
    """Extension for the stored copy of ``image_file``.

    Taken from the uploaded name as sent, so non-ASCII names keep it; when
    that name carries no known image extension it is guessed from the
    mimetype.
    """
    filename = image_file.filename or ""
    if allowed_image_extension(filename):
        return os.path.splitext(filename)[1].lower()

    mimetype = (image_file.mimetype or "").lower()
    if mimetype.startswith("image/"):
        return mimetypes.guess_extension(mimetype) or ""
    return ""


def _stream_size(image_file) -> int:
    stream = image_file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def validate_product_image(image_file) -> Optional[str]:
    if not os.path.basename(image_file.filename or "").strip():
        return "Please choose a valid file name."

    mimetype = (image_file.mimetype or "").lower()
    is_image_type = mimetype.startswith("image/")
    if mimetype not in ("", "application/octet-stream") and not is_image_type:
        return "Only image files are allowed!"
    if not is_image_type and not allowed_image_extension(image_file.filename):
        return "Only image files are allowed!"

    max_size = current_app.config["MAX_IMAGE_SIZE"]
    if _stream_size(image_file) > max_size:
        return f"Each image must be at most {max_size // (1024 * 1024)} MB."

    return None


def save_product_image(image_file) -> Tuple[Optional[str], Optional[str]]:
    image_error = validate_product_image(image_file)
    if image_error:
        return None, image_error

    unique_filename = f"images-{uuid4().hex}{image_extension(image_file)}"
    upload_folder = current_app.config["UPLOAD_FOLDER"]
    destination = os.path.join(upload_folder, unique_filename)

    try:
        os.makedirs(upload_folder, exist_ok=True)
        image_file.save(destination)
    except OSError as exc:
        current_app.logger.error("Failed to save image %s: %s", destination, exc)
        return None, "We could not store the uploaded image. Please try again."

    return f"{UPLOAD_URL_PREFIX}{unique_filename}", None


def save_product_images(image_files) -> Tuple[List[str], Optional[str]]:
    """Store every upload or none of them.

    Returns the stored ``/uploads/...`` paths, or an empty list and the
    error message after removing whatever was already written.
    """
    saved_paths: List[str] = []
    for image_file in image_files or []:
        if not image_file or not getattr(image_file, "filename", ""):
            continue
        image_path, image_error = save_product_image(image_file)
        if image_error:
            remove_product_images(saved_paths)
            return [], image_error
        saved_paths.append(image_path)

    return saved_paths, None


def resolve_image_path(image_path: str) -> Optional[str]:
    filename = secure_filename(os.path.basename(str(image_path).strip()))
    if not filename:
        return None
    return os.path.join(current_app.config["UPLOAD_FOLDER"], filename)


def remove_product_images(image_paths) -> None:
    if not image_paths:
        return

    if isinstance(image_paths, str):
        image_paths = [image_paths]

    for image_path in image_paths:
        if not image_path:
            continue
        target = resolve_image_path(image_path)
        if not target:
            continue
        try:
            os.remove(target)
        except FileNotFoundError:
            continue
        except OSError as exc:
            current_app.logger.warning("Failed to delete image %s: %s", target, exc)
