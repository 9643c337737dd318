import numpy as np
from joblib import Parallel, delayed
from scipy.spatial import cKDTree, distance

from Errors import ConfigurationError
from ShapeSpace import ShapeBounds, SimilarityMatrix, RectTransform

param_pixel_padding=0.1

####################### shape indexed features ############################
# pixel positions stored as offsets to the closest landmark of a mean shape
class PixelCoordinates:
    def __init__(self, landmarks, offsets):
        self.landmarks=np.asarray(landmarks, dtype=np.intp)
        self.offsets=np.asarray(offsets, dtype=np.float64)
        assert len(self.landmarks)==len(self.offsets)

    def __len__(self):
        return len(self.landmarks)

    # positions in the frame of the reference shape itself
    def MeanPositions(self, mean_shape):
        return mean_shape[self.landmarks]+self.offsets

    # re-anchor the offsets on shape, rotated and scaled like shape is to mean_shape
    def Positions(self, shape, mean_shape):
        m=SimilarityMatrix(mean_shape, shape)
        return shape[self.landmarks]+self.offsets.dot(m.T)

# draw pixel positions uniformly in the (padded) bounds of the mean shape
def SamplePixelCoordinates(mean_shape, num, rnd, padding=param_pixel_padding):
    rect=ShapeBounds(mean_shape)
    lo=rect[0]
    hi=rect[3]
    pad=(hi-lo)*padding
    points=rnd.uniform(lo-pad, hi+pad, size=(num, 2))
    _, landmarks=cKDTree(mean_shape).query(points)
    return PixelCoordinates(landmarks, points-mean_shape[landmarks])

# pair selection probabilities decaying with the distance of the two pixels
def PairProbabilities(coords, mean_shape, lam):
    pos=coords.MeanPositions(mean_shape)
    d=distance.squareform(distance.pdist(pos))
    off=~np.eye(len(pos), dtype=bool)
    if not off.any():
        raise ConfigurationError('pixel pairs need at least 2 pixel coordinates')
    # shifted by the closest pair so that the largest weight is exp(0)
    p=np.exp(-lam*(d-d[off].min()))
    np.fill_diagonal(p, 0)
    total=p.sum()
    if not np.isfinite(total) or total<=0:
        raise ConfigurationError('pair probabilities are not finite for exponential_lambda %r' % lam)
    return (p/total).ravel()

# nearest pixel lookup, positions in image coords
def ReadPixelIntensities(image, positions):
    h, w=image.shape[:2]
    # in case out of boundary
    x=np.clip(np.rint(positions[:, 0]).astype(np.intp), 0, w-1)
    y=np.clip(np.rint(positions[:, 1]).astype(np.intp), 0, h-1)
    return image[y, x].astype(np.float32)

# intensities of one image at the coordinates anchored to a normalized estimate
def ShapeIntensities(image, rect, estimate, coords, mean_shape):
    npos=coords.Positions(estimate, mean_shape)
    return ReadPixelIntensities(image, RectTransform(rect).inverse(npos))

def _IntensityChunk(images, rects, idxs, estimates, coords, mean_shape):
    out=np.empty((len(idxs), len(coords)), dtype=np.float32)
    for k in range(len(idxs)):
        out[k]=ShapeIntensities(images[idxs[k]], rects[idxs[k]], estimates[k], coords, mean_shape)
    return out

# intensities for every sample, rows in sample order whatever the worker count
def ComputePixelIntensities(images, rects, idxs, estimates, coords, mean_shape, n_jobs=1, chunk_size=256):
    idxs=np.asarray(idxs)
    if len(idxs)==0:
        return np.empty((0, len(coords)), dtype=np.float32)
    bounds=range(0, len(idxs), chunk_size)
    if n_jobs==1 or len(bounds)==1:
        return _IntensityChunk(images, rects, idxs, estimates, coords, mean_shape)
    parts=Parallel(n_jobs=n_jobs, prefer='threads')(
        delayed(_IntensityChunk)(images, rects, idxs[b:b+chunk_size], estimates[b:b+chunk_size], coords, mean_shape)
        for b in bounds)
    return np.vstack(parts)
