from setuptools import setup, find_packages

setup(
    name="scenecoder",
    version="0.1.0",
    packages=find_packages(include=["scenecoder", "scenecoder.*"]),
    install_requires=[
        "ffmpeg-python",
        "rich>=13.0.0",  # Explicit minimum version
        "scenedetect[opencv]",
        "psutil",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "scenecoder=scenecoder.__main__:main",
        ],
    },
    python_requires=">=3.8",
)
