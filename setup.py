import setuptools


if __name__ == "__main__":
    setuptools.setup(
        name="pygit2-ext",
        version="0.1.0",
        description="Commit rewriting, signing and hooks on top of pygit2",
        packages=["pygit2_ext"],
        python_requires=">=3.8",
        install_requires=["pygit2>=1.15", "typing_extensions"],
        extras_require={"test": ["pytest"]},
    )
