from typing import Dict, Optional, Union
import docker
import logging
import os
import tempfile

from ..core.exceptions import BuildError

logger = logging.getLogger(__name__)

BASE_IMAGES = {
    "node18": "node:18-alpine",
    "python311": "python:3.11-slim",
    "go121": "golang:1.21-alpine",
    "rust": "rust:latest",
}

# Handler file written when the source is a single string
DEFAULT_HANDLER_FILES = {
    "node18": "index.js",
    "python311": "app.py",
    "go121": "main.go",
    "rust": "src/main.rs",
}

Source = Union[str, Dict[str, str]]


class ImageBuilder:
    """Turns a runtime identifier and source into a runnable image reference."""

    def build(self, runtime: str, source: Source, image_name: str) -> str:
        raise NotImplementedError


def generate_dockerfile(runtime: str) -> str:
    dockerfile = f"FROM {BASE_IMAGES[runtime]}\n"
    dockerfile += "WORKDIR /app\n"
    dockerfile += "COPY . .\n"

    if runtime == "node18":
        dockerfile += "RUN npm install --production\n"
        dockerfile += "EXPOSE 8080\n"
        dockerfile += 'CMD ["node", "index.js"]\n'
    elif runtime == "python311":
        dockerfile += "RUN if [ -f requirements.txt ]; then pip install --no-cache-dir -r requirements.txt; fi\n"
        dockerfile += "EXPOSE 8080\n"
        dockerfile += 'CMD ["python", "app.py"]\n'
    elif runtime == "go121":
        dockerfile += "RUN go build -o /app/handler .\n"
        dockerfile += "EXPOSE 8080\n"
        dockerfile += 'CMD ["/app/handler"]\n'
    elif runtime == "rust":
        dockerfile += "RUN cargo build --release\n"
        dockerfile += "EXPOSE 8080\n"
        dockerfile += 'CMD ["./target/release/handler"]\n'

    return dockerfile


def source_files(runtime: str, source: Source) -> Dict[str, str]:
    if isinstance(source, dict):
        return dict(source)
    return {DEFAULT_HANDLER_FILES[runtime]: source}


class DockerImageBuilder(ImageBuilder):
    """
    Builds function images with the local Docker daemon and pushes them to
    the configured registry.
    """

    def __init__(
        self,
        registry_url: str,
        docker_client: Optional[docker.DockerClient] = None,
        base_url: Optional[str] = None,
    ):
        self.registry_url = registry_url.rstrip("/")
        self.base_url = base_url
        self._docker_client = docker_client

    @property
    def docker_client(self) -> docker.DockerClient:
        if self._docker_client is None:
            if self.base_url:
                self._docker_client = docker.DockerClient(base_url=self.base_url)
            else:
                self._docker_client = docker.from_env()
        return self._docker_client

    def image_reference(self, image_name: str, tag: str = "latest") -> str:
        return f"{self.registry_url}/{image_name}:{tag}"

    def build(self, runtime: str, source: Source, image_name: str) -> str:
        if runtime not in BASE_IMAGES:
            raise BuildError(f"no base image for runtime {runtime}")

        image_ref = self.image_reference(image_name)
        repository, tag = image_ref.rsplit(":", 1)
        logger.info(f"Building image: {image_ref}")

        try:
            with tempfile.TemporaryDirectory() as build_dir:
                for rel_path, content in source_files(runtime, source).items():
                    path = os.path.join(build_dir, rel_path)
                    os.makedirs(os.path.dirname(path), exist_ok=True)
                    with open(path, "w") as f:
                        f.write(content)
                with open(os.path.join(build_dir, "Dockerfile"), "w") as f:
                    f.write(generate_dockerfile(runtime))

                self.docker_client.images.build(path=build_dir, tag=image_ref, rm=True)

            for line in self.docker_client.images.push(repository, tag=tag, stream=True, decode=True):
                if "error" in line:
                    raise BuildError(f"push of {image_ref} failed: {line['error']}")
        except docker.errors.BuildError as e:
            logger.error(f"Docker build failed for {image_ref}: {e.msg}")
            raise BuildError(str(e.msg)) from e
        except docker.errors.DockerException as e:
            logger.error(f"Docker error while building {image_ref}: {str(e)}")
            raise BuildError(str(e)) from e

        logger.info(f"Built and pushed image: {image_ref}")
        return image_ref
