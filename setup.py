from setuptools import setup, find_packages

setup(
    name="orangepi-signage-agent",
    version="0.1.0",
    description="Headless digital signage agent: check-in, media sync and looped playback",
    packages=find_packages(include=["src", "src.*"]),
    python_requires=">=3.8",
    install_requires=[
        "PyYAML>=6.0",
        "psutil>=5.9.3",
        "requests>=2.31.0",
        "urllib3>=1.26",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black>=23.0.0",
            "pylint>=2.17.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "signage-agent=src.agent.main:main",
        ]
    },
)
