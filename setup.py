from setuptools import setup, find_packages


setup(
    name="geostereo",
    version="1.0.0",
    description="Camera alignment, jitter residuals and multiview stereo triangulation for remote sensing images",
    packages=find_packages(include=["geostereo", "geostereo.*"]),
    python_requires=">=3.11",
    install_requires=[
        "numpy",
        "scipy",
        "lxml",
        "opencv-python",
        "pyproj",
        "rasterio",
        "affine<3",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
