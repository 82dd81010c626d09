

from typing import Union, Sequence
from pathlib import Path

import numpy as np
import numpy.typing as npt

DOUBLE_ARRAY = np.typing.NDArray[np.float64]
BOOL_ARRAY = np.typing.NDArray[np.bool_]
ARRAY_LIKE = npt.ArrayLike
SCALAR_OR_ARRAY = Union[float, npt.ArrayLike]
F_SCALAR_OR_ARRAY = Union[float, DOUBLE_ARRAY]

PATH = Union[Path, str]

NONENUM = Union[float, None]
NONEARRAY = Union[npt.NDArray, None]

F_ARRAY_LIKE = Sequence[float] | DOUBLE_ARRAY
