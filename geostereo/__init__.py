# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
geostereo refines the cameras of remote sensing images and triangulates their stereo disparities into point clouds.

* :mod:`.camera_models`, :mod:`.parameter_store`, :mod:`.camera_adjustment` and :mod:`.similarity` hold the cameras,
  pack them for the solver and move them with similarity transforms.
* :mod:`.ground_alignment` brings cameras into the frame of ground control.
* :mod:`.jitter` builds the residuals refining linescan trajectories.
* :mod:`.rig_set` and :mod:`.intrinsics_policy` read rig definitions and the choice of intrinsics to solve for.
* :mod:`.triangulation` turns disparities into point clouds.
"""

import warnings


warnings.filterwarnings("default", category=DeprecationWarning)


__version__ = "1.0.0"
