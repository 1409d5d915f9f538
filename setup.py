from setuptools import setup, find_packages

setup(
    name="selfcompress",
    version="0.1.0",
    description="Self-compressing quantized convolution layers with learnable bit-depth",
    author="selfcompress",
    author_email="",
    packages=find_packages(include=["selfcompress", "selfcompress.*"]),
    python_requires=">=3.8",
    install_requires=[
        "torch>=1.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0",
            "numpy>=1.20.0",
            "pytest-cov",
            "black",
            "flake8",
            "mypy",
        ],
        "examples": [
            "torchvision",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
