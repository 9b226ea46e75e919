import pytest
from PIL import Image

WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)


@pytest.fixture
def make_png(tmp_path):
    """Write an RGBA PNG filled with one colour, optionally with some pixels repainted."""
    def factory(name, size=(100, 100), color=WHITE, changed=(), changed_color=BLACK):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        img = Image.new('RGBA', size, color)
        for xy in changed:
            img.putpixel(xy, changed_color)
        img.save(path)
        return path
    return factory
