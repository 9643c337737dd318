import numpy as np
from skimage import transform

from Errors import ConfigurationError

################### rect ###################
# corners are ordered top-left, top-right, bottom-left, bottom-right
UNIT_RECT=np.array([[-0.5, -0.5], [0.5, -0.5], [-0.5, 0.5], [0.5, 0.5]])

def CreateRect(x1, y1, x2, y2):
    return np.array([[x1, y1], [x2, y1], [x1, y2], [x2, y2]], dtype=np.float64)

# [x1,y1,x2,y2] box to corners
def Bbox2Rect(bbox):
    return CreateRect(bbox[0], bbox[1], bbox[2], bbox[3])

# corners back to [x1,y1,x2,y2], exact for axis aligned rects only
def Rect2Bbox(rect):
    return np.array([rect[0, 0], rect[0, 1], rect[3, 0], rect[3, 1]])

# generate rect from shape
def ShapeBounds(shape):
    x1=np.min(shape[:, 0])
    y1=np.min(shape[:, 1])
    x2=np.max(shape[:, 0])
    y2=np.max(shape[:, 1])
    return CreateRect(x1, y1, x2, y2)

def RectCenter(rect):
    return rect.mean(0)

# fraction of the landmarks lying inside an axis aligned rect
def RatioRectShapeOverlap(rect, shape):
    min_c=rect[0]
    max_c=rect[3]
    inside=np.all(shape>=min_c, 1) & np.all(shape<=max_c, 1)
    return np.count_nonzero(inside)/float(len(shape))

# detector rects are larger and shifted upwards compared to tight landmark bounds
def TightRectToDetectorRect(rect, image_shape, scale=1.25, tx=-0.01, ty=-0.05):
    h, w=image_shape[:2]
    center=RectCenter(rect)
    return (rect-center)*scale+center+np.array([tx*w, ty*h])

################### shape ###################
# affine transform mapping the rect onto the unit rect
def RectTransform(rect):
    tform=transform.estimate_transform('affine', np.asarray(rect, dtype=np.float64), UNIT_RECT)
    if not tform or not np.all(np.isfinite(tform.params)):
        raise ConfigurationError('degenerate rect %s' % np.array2string(np.asarray(rect).ravel()))
    return tform

# transform image points to the rect relative normalized space
def Shape2Normalized(shape, rect):
    return RectTransform(rect)(shape)

# transform normalized points back to image coords
def Shape2Image(nshape, rect):
    return RectTransform(rect).inverse(nshape)

# make the mean point of the shape (0,0)
def CenterShape(shape):
    cshape=shape.copy()
    cshape-=cshape.mean(0)
    return cshape

def MeanShape(shapes):
    return np.mean(np.asarray(shapes, dtype=np.float64), 0)

# best fit similarity from src to dst points
def SimilarityTransform(src, dst):
    return transform.estimate_transform('similarity', CenterShape(src), CenterShape(dst))

# 2x2 rotation+scale part of the similarity aligning src to dst
def SimilarityMatrix(src, dst):
    tform=SimilarityTransform(src, dst)
    # collapsed shapes have no defined rotation
    if not tform or not np.all(np.isfinite(tform.params)):
        return np.eye(2)
    return tform.params[:2, :2]
